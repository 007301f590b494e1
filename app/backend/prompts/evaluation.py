EVALUATION_VERSION = "eval_v1"

SYSTEM_PROMPT = "You are an expert VC analyst specializing in startup evaluation."

USER_PROMPT_TEMPLATE = """Analyze this startup data and provide a detailed assessment with scores and recommendations. Return the analysis in JSON format with the following structure:
{
  "scores": {
    "marketPotential": number, // 1-10
    "teamStrength": number,
    "productInnovation": number,
    "competitiveAdvantage": number,
    "financialViability": number
  },
  "analysis": {
    "strengths": string[],
    "weaknesses": string[],
    "opportunities": string[],
    "threats": string[]
  },
  "recommendations": string[],
  "riskLevel": "low" | "medium" | "high",
  "investmentPotential": "strong" | "moderate" | "weak"
}

Every score is an integer from 1 to 10. Return ONLY the JSON object.

Startup Data:
{startup_data_json}"""
