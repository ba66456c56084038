"""DORA performance tiers (State of DevOps 2024 boundaries)."""

from __future__ import annotations

ELITE = "elite"
HIGH = "high"
MEDIUM = "medium"
LOW = "low"

# deployments per day
DEPLOYMENT_FREQUENCY_THRESHOLDS = {ELITE: 1.0, HIGH: 1 / 7, MEDIUM: 1 / 30}
# hours, exclusive upper bounds
LEAD_TIME_THRESHOLDS = {ELITE: 1.0, HIGH: 24.0, MEDIUM: 24.0 * 7}
# percent, inclusive upper bounds; elite and high share a boundary
CHANGE_FAILURE_RATE_THRESHOLDS = {HIGH: 15.0, MEDIUM: 30.0}
# hours, exclusive upper bounds
MTTR_THRESHOLDS = {ELITE: 1.0, HIGH: 24.0, MEDIUM: 24.0 * 7}


def classify_deployment_frequency(deploys_per_day: float) -> str:
    if deploys_per_day >= DEPLOYMENT_FREQUENCY_THRESHOLDS[ELITE]:
        return ELITE
    if deploys_per_day >= DEPLOYMENT_FREQUENCY_THRESHOLDS[HIGH]:
        return HIGH
    if deploys_per_day >= DEPLOYMENT_FREQUENCY_THRESHOLDS[MEDIUM]:
        return MEDIUM
    return LOW


def frequency_category(deploys_per_day: float) -> str:
    """Calendar label for a deploy rate: daily, weekly, monthly or yearly."""
    return {ELITE: "daily", HIGH: "weekly", MEDIUM: "monthly", LOW: "yearly"}[
        classify_deployment_frequency(deploys_per_day)
    ]


def _classify_hours(hours: float, thresholds: dict) -> str:
    if hours < thresholds[ELITE]:
        return ELITE
    if hours < thresholds[HIGH]:
        return HIGH
    if hours < thresholds[MEDIUM]:
        return MEDIUM
    return LOW


def classify_lead_time(hours: float) -> str:
    return _classify_hours(hours, LEAD_TIME_THRESHOLDS)


def classify_mttr(hours: float) -> str:
    return _classify_hours(hours, MTTR_THRESHOLDS)


def classify_change_failure_rate(rate: float) -> str:
    if rate <= CHANGE_FAILURE_RATE_THRESHOLDS[HIGH]:
        return HIGH
    if rate <= CHANGE_FAILURE_RATE_THRESHOLDS[MEDIUM]:
        return MEDIUM
    return LOW


__all__ = [
    "ELITE",
    "HIGH",
    "MEDIUM",
    "LOW",
    "DEPLOYMENT_FREQUENCY_THRESHOLDS",
    "LEAD_TIME_THRESHOLDS",
    "CHANGE_FAILURE_RATE_THRESHOLDS",
    "MTTR_THRESHOLDS",
    "classify_deployment_frequency",
    "frequency_category",
    "classify_lead_time",
    "classify_mttr",
    "classify_change_failure_rate",
]
