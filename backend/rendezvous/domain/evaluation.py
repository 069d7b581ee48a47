"""Evaluation records and the quality gate for payout release.

Evaluations are stored as camelCase dicts inside ``Appointment.evaluation_history``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class QualityAssessment:
    rating: int
    total_call_duration: float
    low_rating: bool
    short_call: bool

    @property
    def passes(self) -> bool:
        return not (self.low_rating or self.short_call)


def total_call_duration(call_history: list[dict[str, Any]] | None) -> float:
    """Sum durationMinutes over call segments; missing or junk values count as 0."""
    total = 0.0
    for segment in call_history or []:
        try:
            total += float(segment.get("durationMinutes") or 0)
        except (TypeError, ValueError, AttributeError):
            continue
    return int(total) if total.is_integer() else total


def new_evaluation(rating: int, client_id: str, duration: float, evaluated_at: datetime) -> dict[str, Any]:
    return {
        "rating": rating,
        "clientId": client_id,
        "totalCallDuration": duration,
        "evaluatedAt": evaluated_at.isoformat(),
        "processed": False,
    }


def latest_unprocessed(history: list[dict[str, Any]] | None) -> dict[str, Any] | None:
    """Most recently appended evaluation not yet processed."""
    for evaluation in reversed(history or []):
        if not evaluation.get("processed"):
            return evaluation
    return None


def mark_all_processed(history: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [{**evaluation, "processed": True} for evaluation in history or []]


def assess(evaluation: dict[str, Any], min_rating: int = 4, min_duration: float = 10) -> QualityAssessment:
    rating = int(evaluation.get("rating") or 0)
    duration = float(evaluation.get("totalCallDuration") or 0)
    return QualityAssessment(
        rating=rating,
        total_call_duration=duration,
        low_rating=rating < min_rating,
        short_call=duration < min_duration,
    )
