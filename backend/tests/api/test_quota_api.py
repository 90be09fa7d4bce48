"""Tests for the quota admin API.

Tests cover:
- GET /api/quota/status, /summary, /analytics, /recommendations, /history
- POST /api/quota/estimate and /approve (including operator force-approval)
- Alert listing and acknowledgement (404 for unknown alerts)
- Emergency mode activation and deactivation
- 503 with debug_id when the quota ledger is unreachable
"""

import uuid

import pytest

from app.db.redis import get_redis
from app.youtube.ledger import EMERGENCY_KEY, USAGE_KEY

pytestmark = pytest.mark.integration


def test_health_and_correlation_id(api_client):
    response = api_client.get("/api/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "bandhub-sync"}
    assert response.headers["x-request-id"] == "req-42"


def test_ready_checks_database_and_redis(api_client):
    response = api_client.get("/api/ready")

    assert response.status_code == 200
    assert response.json()["checks"] == {"database": True, "redis": True}


def test_status(api_client, redis_seed):
    redis_seed.set(USAGE_KEY, 7600)

    response = api_client.get("/api/quota/status")

    assert response.status_code == 200
    data = response.json()
    assert data["current_usage"] == 7600
    assert data["remaining"] == 2400
    assert data["alert_level"] == "CRITICAL"
    assert data["is_emergency_mode"] is False


def test_summary_and_analytics_on_empty_day(api_client):
    summary = api_client.get("/api/quota/summary")
    assert summary.status_code == 200
    assert summary.json()["today"]["used"] == 0
    assert summary.json()["unacknowledged_alerts"] == []

    analytics = api_client.get("/api/quota/analytics")
    assert analytics.status_code == 200
    assert analytics.json()["forecast"]["risk_level"] == "low"
    assert analytics.json()["last_7_days"]["trend"] == "stable"


def test_recommendations(api_client):
    response = api_client.get("/api/quota/recommendations")

    assert response.status_code == 200
    assert response.json()["recommendations"] == []


def test_history_validates_days(api_client):
    assert api_client.get("/api/quota/history?days=7").json() == []
    assert api_client.get("/api/quota/history?days=0").status_code == 422


def test_estimate_channel_sync(api_client):
    response = api_client.post(
        "/api/quota/estimate",
        json={"has_channel_id": True, "estimated_video_count": 120, "use_search": False},
    )

    assert response.status_code == 200
    assert response.json() == {
        "estimated_cost": 7,
        "breakdown": {"channel.list": 1, "playlistItems.list": 3, "video.list": 3},
        "sync_method": "Channel-based sync (efficient)",
        "is_high_cost": False,
    }


def test_estimate_rejects_negative_counts(api_client):
    response = api_client.post(
        "/api/quota/estimate",
        json={"has_channel_id": True, "estimated_video_count": -1, "use_search": False},
    )
    assert response.status_code == 422


def test_approve_refuses_beyond_share(api_client, redis_seed):
    redis_seed.set(USAGE_KEY, 9600)

    response = api_client.post(
        "/api/quota/approve",
        json={"entity_id": str(uuid.uuid4()), "priority": "HIGH", "estimated_cost": 200},
    )

    data = response.json()
    assert data["approved"] is False
    assert data["allocated_quota"] == pytest.approx(160)
    assert data["remaining_quota"] == 400
    assert data["reason"] == "Estimated cost (200) exceeds allocated quota (160)"


def test_force_approve_keeps_refusal_reason(api_client, redis_seed):
    redis_seed.set(USAGE_KEY, 9600)

    response = api_client.post(
        "/api/quota/approve",
        json={"entity_id": "band-1", "priority": "LOW", "estimated_cost": 200, "force_approve": True},
    )

    data = response.json()
    assert data["approved"] is True
    assert data["reason"] == "Force approved by operator (refusal: Estimated cost (200) exceeds allocated quota (40))"


def test_approve_rejects_unknown_priority(api_client):
    response = api_client.post(
        "/api/quota/approve",
        json={"entity_id": "band-1", "priority": "URGENT", "estimated_cost": 5},
    )
    assert response.status_code == 422


def test_emergency_mode_round_trip(api_client, redis_seed):
    response = api_client.post("/api/quota/emergency/activate", json={"reason": "Upstream incident"})
    assert response.json() == {"is_emergency_mode": True}
    assert redis_seed.exists(EMERGENCY_KEY) == 1
    assert api_client.get("/api/quota/status").json()["is_emergency_mode"] is True

    alerts = api_client.get("/api/quota/alerts").json()
    assert alerts[0]["level"] == "DEPLETED"
    assert alerts[0]["message"].endswith("Upstream incident")

    refused = api_client.post(
        "/api/quota/approve",
        json={"entity_id": "band-1", "priority": "CRITICAL", "estimated_cost": 1},
    ).json()
    assert refused["approved"] is False
    assert refused["reason"] == "Emergency quota preservation mode active"

    response = api_client.post("/api/quota/emergency/deactivate")
    assert response.json() == {"is_emergency_mode": False}
    assert redis_seed.exists(EMERGENCY_KEY) == 0


def test_acknowledge_alert(api_client):
    api_client.post("/api/quota/emergency/activate")
    [alert] = api_client.get("/api/quota/alerts?unacknowledged=true").json()

    response = api_client.post(
        f"/api/quota/alerts/{alert['id']}/acknowledge",
        json={"acknowledged_by": "ops@bandhub.test"},
    )

    assert response.status_code == 200
    assert response.json()["acknowledged"] is True
    assert response.json()["acknowledged_by"] == "ops@bandhub.test"
    assert api_client.get("/api/quota/alerts?unacknowledged=true").json() == []


def test_acknowledge_unknown_alert_returns_404(api_client):
    response = api_client.post(
        "/api/quota/alerts/missing/acknowledge",
        json={"acknowledged_by": "ops"},
    )

    assert response.status_code == 404
    assert "debug_id" in response.json()


def test_ledger_outage_returns_503(api_app, api_client, broken_redis):
    api_app.dependency_overrides[get_redis] = lambda: broken_redis

    response = api_client.get("/api/quota/status")

    assert response.status_code == 503
    assert response.json()["detail"] == "Quota ledger unavailable"
    assert "debug_id" in response.json()


def test_approval_during_ledger_outage_returns_503(api_app, api_client, broken_redis):
    api_app.dependency_overrides[get_redis] = lambda: broken_redis

    response = api_client.post(
        "/api/quota/approve",
        json={"entity_id": "band-1", "priority": "CRITICAL", "estimated_cost": 1},
    )

    assert response.status_code == 503
