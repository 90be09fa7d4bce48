"""Pure analytics helpers for quota reporting: trends, forecasts, recommendations."""

from app.youtube.schemas import Forecast, RiskLevel, Trend, UsageWindow

TREND_UP_FACTOR = 1.1
TREND_DOWN_FACTOR = 0.9

LOW_CACHE_HIT_RATE = 0.5

RAISE_CACHE_TTL = "Cache hit rate is low - consider increasing cache TTL"
AVOID_SEARCH = "High search API usage - prioritize channel-based sync"

_RISK_RECOMMENDATIONS: dict[str, list[str]] = {
    "high": [
        "Consider reducing sync frequency",
        "Increase cache TTL to reduce API calls",
        "Prioritize official channels over search-based sync",
    ],
    "medium": [
        "Monitor usage closely during peak hours",
        "Review search query efficiency",
    ],
    "low": [],
}


def _mean(values: list[int]) -> float:
    return sum(values) / len(values) if values else 0.0


def classify_trend(daily_totals: list[int]) -> Trend:
    """Compare the average of the later half of a window with the earlier half.

    Odd-length windows put the middle day in the later half. Fewer than two
    days is always stable.
    """
    if len(daily_totals) < 2:
        return "stable"

    middle = len(daily_totals) // 2
    first_avg = _mean(daily_totals[:middle])
    second_avg = _mean(daily_totals[middle:])

    if second_avg > first_avg * TREND_UP_FACTOR:
        return "increasing"
    if second_avg < first_avg * TREND_DOWN_FACTOR:
        return "decreasing"
    return "stable"


def window_stats(daily_totals: list[int]) -> UsageWindow:
    """Summarize daily totals ordered oldest first."""
    return UsageWindow(
        average_daily=_mean(daily_totals),
        peak_daily=max(daily_totals, default=0),
        total_used=sum(daily_totals),
        trend=classify_trend(daily_totals),
    )


def risk_level(average_daily: float, limit: int) -> RiskLevel:
    if average_daily < limit * 0.5:
        return "low"
    if average_daily < limit * 0.75:
        return "medium"
    return "high"


def build_recommendations(
    risk: RiskLevel,
    cache_hit_rate: float,
    requests_today: int,
    operation_breakdown: dict[str, int],
) -> list[str]:
    """Risk rules first, then the cache and search rules for today's traffic."""
    recommendations = list(_RISK_RECOMMENDATIONS[risk])

    if requests_today > 0 and cache_hit_rate < LOW_CACHE_HIT_RATE and RAISE_CACHE_TTL not in recommendations:
        recommendations.append(RAISE_CACHE_TTL)

    total_cost = sum(operation_breakdown.values())
    if total_cost > 0 and operation_breakdown.get("search", 0) > total_cost / 2:
        recommendations.append(AVOID_SEARCH)

    return recommendations


def build_forecast(
    average_daily: float,
    limit: int,
    cache_hit_rate: float = 0.0,
    requests_today: int = 0,
    operation_breakdown: dict[str, int] | None = None,
) -> Forecast:
    risk = risk_level(average_daily, limit)
    return Forecast(
        estimated_daily_usage=round(average_daily),
        projected_monthly_usage=round(average_daily * 30),
        risk_level=risk,
        recommendations=build_recommendations(
            risk,
            cache_hit_rate,
            requests_today,
            operation_breakdown or {},
        ),
    )
