"""Tests for the pure analytics helpers."""

import pytest

from app.youtube.analytics import (
    AVOID_SEARCH,
    RAISE_CACHE_TTL,
    build_forecast,
    build_recommendations,
    classify_trend,
    risk_level,
    window_stats,
)

pytestmark = pytest.mark.unit


# ============================================================================
# Trend
# ============================================================================


@pytest.mark.parametrize(
    "totals,expected",
    [
        ([], "stable"),
        ([5000], "stable"),
        ([1000, 1000, 2000, 2000], "increasing"),
        ([2000, 2000, 1000, 1000], "decreasing"),
        ([1000, 1050, 1000, 1050], "stable"),
    ],
)
def test_classify_trend(totals, expected):
    assert classify_trend(totals) == expected


def test_middle_day_of_odd_window_counts_toward_later_half():
    # first half [1000] vs later half [1000, 1300] -> 1150 > 1100
    assert classify_trend([1000, 1000, 1300]) == "increasing"


def test_window_stats():
    window = window_stats([1000, 3000, 2000])

    assert window.average_daily == pytest.approx(2000)
    assert window.peak_daily == 3000
    assert window.total_used == 6000


def test_empty_window():
    window = window_stats([])

    assert window.average_daily == 0
    assert window.peak_daily == 0
    assert window.trend == "stable"


# ============================================================================
# Risk and recommendations
# ============================================================================


@pytest.mark.parametrize(
    "average,expected",
    [(0, "low"), (4999, "low"), (5000, "medium"), (7499, "medium"), (7500, "high"), (12_000, "high")],
)
def test_risk_level_bands(average, expected):
    assert risk_level(average, 10_000) == expected


def test_high_risk_recommendations_come_first():
    recommendations = build_recommendations("high", 0.9, 10, {})
    assert recommendations[0] == "Consider reducing sync frequency"
    assert RAISE_CACHE_TTL not in recommendations


def test_low_cache_hit_rate_only_counts_with_traffic():
    assert RAISE_CACHE_TTL in build_recommendations("low", 0.2, 10, {})
    assert build_recommendations("low", 0.0, 0, {}) == []


def test_search_heavy_day_recommends_channel_sync():
    recommendations = build_recommendations("low", 0.9, 10, {"search": 300, "video.list": 6})
    assert AVOID_SEARCH in recommendations

    recommendations = build_recommendations("low", 0.9, 10, {"search": 100, "playlistItems.list": 150})
    assert AVOID_SEARCH not in recommendations


def test_forecast_projects_thirty_days():
    forecast = build_forecast(6200.4, 10_000)

    assert forecast.estimated_daily_usage == 6200
    assert forecast.projected_monthly_usage == 186_012
    assert forecast.risk_level == "medium"
    assert forecast.recommendations == [
        "Monitor usage closely during peak hours",
        "Review search query efficiency",
    ]
