from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Union

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from .constants import MAX_ERROR_CHARS
from .models import (
    INVESTMENT_POTENTIALS,
    RISK_LEVELS,
    SCORE_KEYS,
    SWOT_KEYS,
    StartupProfile,
)
from .prompts.evaluation import EVALUATION_VERSION, SYSTEM_PROMPT, USER_PROMPT_TEMPLATE
from .schema import profile_for_prompt


logger = logging.getLogger("uvicorn.error")
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT_SECONDS = 30.0
EXPECTED_KEYS = {"scores", "analysis", "recommendations", "riskLevel", "investmentPotential"}


class EvaluationError(RuntimeError):
    """The completion call itself failed (transport, provider or config)."""


@dataclass
class EvaluationOk:
    evaluation: dict


@dataclass
class EvaluationParseError:
    raw_text: str
    reason: str


EvaluationResult = Union[EvaluationOk, EvaluationParseError]


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise EvaluationError(
            "Missing OPENAI_API_KEY. Set it before submitting startups for evaluation."
        )
    return api_key


def _build_client() -> OpenAI:
    timeout = float(os.getenv("OPENAI_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    base_url = os.getenv("OPENAI_BASE_URL", "").strip() or None
    return OpenAI(
        api_key=_get_api_key(),
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
    )


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def build_evaluation_prompt(profile: StartupProfile) -> str:
    startup_data = json.dumps(profile_for_prompt(profile), indent=2, ensure_ascii=False)
    return USER_PROMPT_TEMPLATE.replace("{startup_data_json}", startup_data)


def request_evaluation_content(user_prompt: str) -> str:
    client = _build_client()
    model = os.getenv("OPENAI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL

    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
        )
    except APIStatusError as exc:
        status_code = getattr(exc, "status_code", None)
        detail = getattr(exc, "message", None) or str(exc)
        if status_code is not None:
            raise EvaluationError(f"Evaluation request failed ({status_code}): {detail}") from exc
        raise EvaluationError(f"Evaluation request failed: {detail}") from exc
    except APITimeoutError as exc:
        raise EvaluationError("Evaluation request timed out.") from exc
    except APIConnectionError as exc:
        raise EvaluationError(f"Failed to connect to the completion API: {exc}") from exc

    choice = response.choices[0] if response.choices else None
    if choice is None:
        raise EvaluationError("Evaluation response did not contain choices.")
    content = _extract_content(choice.message.content)
    if not content:
        raise EvaluationError("Failed to get analysis from the completion API.")
    return content


def _validate_string_list(value: Any, field: str) -> list[str]:
    if not isinstance(value, list):
        raise ValueError(f"{field} must be an array of strings.")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise ValueError(f"{field}[{index}] must be a string.")
    return value


def validate_evaluation_schema(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValueError("Evaluation JSON root must be an object.")

    missing = sorted(EXPECTED_KEYS - set(payload.keys()))
    if missing:
        raise ValueError(f"Evaluation JSON is missing keys: {', '.join(missing)}.")

    scores = payload.get("scores")
    if not isinstance(scores, dict):
        raise ValueError("scores must be an object.")
    for key in SCORE_KEYS:
        score = scores.get(key)
        # bool is an int subclass.
        if isinstance(score, bool) or not isinstance(score, int) or not (1 <= score <= 10):
            raise ValueError(f"scores.{key} must be an integer between 1 and 10.")

    analysis = payload.get("analysis")
    if not isinstance(analysis, dict):
        raise ValueError("analysis must be an object.")
    for key in SWOT_KEYS:
        _validate_string_list(analysis.get(key), f"analysis.{key}")

    _validate_string_list(payload.get("recommendations"), "recommendations")

    if payload.get("riskLevel") not in RISK_LEVELS:
        raise ValueError('riskLevel must be one of: "low", "medium", "high".')
    if payload.get("investmentPotential") not in INVESTMENT_POTENTIALS:
        raise ValueError('investmentPotential must be one of: "strong", "moderate", "weak".')

    return {
        "scores": {key: scores[key] for key in SCORE_KEYS},
        "analysis": {key: list(analysis[key]) for key in SWOT_KEYS},
        "recommendations": list(payload["recommendations"]),
        "riskLevel": payload["riskLevel"],
        "investmentPotential": payload["investmentPotential"],
    }


def parse_evaluation(raw_text: str) -> EvaluationResult:
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        return EvaluationParseError(raw_text=raw_text, reason=f"Evaluation output is not valid JSON: {exc}")

    try:
        return EvaluationOk(evaluation=validate_evaluation_schema(parsed))
    except ValueError as exc:
        return EvaluationParseError(raw_text=raw_text, reason=str(exc))


def evaluate_profile(profile: StartupProfile) -> EvaluationResult:
    """Score a profile with one blocking completion call.

    Transport failures raise EvaluationError. Output that is not the expected
    JSON shape comes back as EvaluationParseError. Nothing is retried.
    """
    raw_content = request_evaluation_content(build_evaluation_prompt(profile))
    result = parse_evaluation(raw_content)
    if isinstance(result, EvaluationParseError):
        logger.warning(
            "evaluation_parse_failed version=%s reason=%s",
            EVALUATION_VERSION,
            _truncate(result.reason),
        )
    else:
        logger.info(
            "evaluation_done version=%s risk=%s potential=%s",
            EVALUATION_VERSION,
            result.evaluation["riskLevel"],
            result.evaluation["investmentPotential"],
        )
    return result
