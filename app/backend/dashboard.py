from __future__ import annotations

from typing import Any, Dict, List, Optional

from .models import SCORE_KEYS, SWOT_KEYS, DashboardResponse, ScoreBar, StartupRecord


SCORE_LABELS = {
    "marketPotential": "Market Potential",
    "teamStrength": "Team Strength",
    "productInnovation": "Product Innovation",
    "competitiveAdvantage": "Competitive Advantage",
    "financialViability": "Financial Viability",
}


def founder_initials(name: Optional[str]) -> str:
    return "".join(part[0] for part in (name or "").split(" ") if part).upper()


def _key_metric_rows(metrics: Optional[List[dict]]) -> List[Dict[str, Any]]:
    rows = []
    for metric in metrics or []:
        change = metric.get("change")
        row = dict(metric)
        if change is not None:
            row["trend"] = "up" if change >= 0 else "down"
        rows.append(row)
    return rows


def build_dashboard(record: StartupRecord) -> DashboardResponse:
    """Shape an analyzed submission for the dashboard page."""
    analysis = record.ai_analysis
    if not analysis:
        raise ValueError("Startup has not been analyzed yet.")

    scores = analysis.get("scores", {})
    score_bars = [
        ScoreBar(key=key, label=SCORE_LABELS[key], score=scores[key], percent=scores[key] * 10)
        for key in SCORE_KEYS
        if key in scores
    ]
    swot_source = analysis.get("analysis", {})

    return DashboardResponse(
        submission_key=record.submission_key,
        organization_name=record.organization_name,
        industries=record.industries or [],
        location=record.location,
        url=record.url,
        total_funding=record.total_funding,
        investment_potential=analysis.get("investmentPotential", ""),
        risk_level=analysis.get("riskLevel", ""),
        score_bars=score_bars,
        revenue_series=list(record.monthly_metrics or []),
        key_metrics=_key_metric_rows(record.key_metrics),
        founders=[
            {**founder, "initials": founder_initials(founder.get("name"))}
            for founder in record.founders or []
        ],
        swot={key: list(swot_source.get(key, [])) for key in SWOT_KEYS},
        recommendations=list(analysis.get("recommendations", [])),
    )
