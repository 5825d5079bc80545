"""ITC Health - reconciliation health metrics and recommended actions.

Usage:
    from health import HealthInput, calculate_health

    report = calculate_health(HealthInput(total_entries=10, matched_count=9))
    print(report.match_rate, report.status, report.summary)
"""

from health.models import (
    HealthInput,
    HealthReport,
    HealthStatus,
    RecommendedAction,
)
from health.calculator import (
    calculate_health,
    calculate_match_rate,
    get_health_status,
    get_action_description,
    format_inr,
)

__all__ = [
    # Models
    "HealthInput",
    "HealthReport",
    "HealthStatus",
    "RecommendedAction",
    # Calculation
    "calculate_health",
    "calculate_match_rate",
    "get_health_status",
    "get_action_description",
    "format_inr",
]
