"""Tests for the sync admin API.

Tests cover:
- POST /api/sync/entities/{id}: channel sync, quota refusal, unknown entity
- POST /api/sync/entities/{id}/backfill and /api/sync/jobs/{id}/retry
- GET /api/sync/jobs, /stats, /entities/needing-full-sync, /scheduler
- POST /api/sync/incremental
- Usage logs are visible as soon as a sync route returns
"""

import pytest

from app.youtube.ledger import USAGE_KEY

pytestmark = pytest.mark.integration

CHANNEL_ID = "UC4aYpLzVYm3wPhX2kQ3lA9g"


def test_channel_sync_is_metered(api_client, seed_band):
    band_id = seed_band(youtube_channel_id=CHANNEL_ID)

    response = api_client.post(f"/api/sync/entities/{band_id}", json={"max_items": 120})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["quota_approved"] is True
    assert data["videos_added"] == 120
    assert data["quota_used"] == 7

    assert api_client.get("/api/quota/status").json()["current_usage"] == 7
    logs = api_client.get(f"/api/quota/usage/logs?entity_id={band_id}").json()
    assert len(logs) == 7
    assert {log["sync_job_id"] for log in logs} == {data["sync_job_id"]}


def test_sync_without_body_walks_the_whole_channel(api_client, seed_band):
    band_id = seed_band(youtube_channel_id=CHANNEL_ID)

    data = api_client.post(f"/api/sync/entities/{band_id}").json()

    assert data["job_type"] == "full"
    assert data["videos_found"] == 120


def test_refused_sync_is_not_an_http_error(api_client, seed_band, redis_seed):
    redis_seed.set(USAGE_KEY, 9600)
    band_id = seed_band()

    response = api_client.post(f"/api/sync/entities/{band_id}")

    assert response.status_code == 200
    assert response.json()["quota_approved"] is False
    assert response.json()["status"] == "failed"


def test_unknown_entity_returns_404(api_client):
    response = api_client.post("/api/sync/entities/missing")

    assert response.status_code == 404
    assert response.json()["detail"] == "Entity with ID missing not found"
    assert "debug_id" in response.json()


def test_backfill(api_client, seed_band):
    band_id = seed_band(youtube_channel_id=CHANNEL_ID)

    response = api_client.post(f"/api/sync/entities/{band_id}/backfill?max_items=100")

    assert response.status_code == 200
    assert response.json()["priority"] == "LOW"
    assert response.json()["videos_found"] == 100


def test_retry_flow(api_client, seed_band, redis_seed):
    redis_seed.set(USAGE_KEY, 9600)
    band_id = seed_band()
    refused = api_client.post(f"/api/sync/entities/{band_id}").json()
    redis_seed.set(USAGE_KEY, 0)

    retried = api_client.post(f"/api/sync/jobs/{refused['sync_job_id']}/retry")

    assert retried.status_code == 200
    assert retried.json()["status"] == "completed"

    again = api_client.post(f"/api/sync/jobs/{retried.json()['sync_job_id']}/retry")
    assert again.status_code == 409
    assert "only failed jobs can be retried" in again.json()["detail"]


def test_retry_unknown_job_returns_404(api_client):
    assert api_client.post("/api/sync/jobs/missing/retry").status_code == 404


def test_jobs_and_stats(api_client, seed_band, seed_creator):
    band_id = seed_band(youtube_channel_id=CHANNEL_ID)
    seed_creator()
    api_client.post(f"/api/sync/entities/{band_id}")

    jobs = api_client.get("/api/sync/jobs").json()
    assert len(jobs) == 1
    assert jobs[0]["entity_id"] == band_id
    assert jobs[0]["actual_quota_cost"] == 7

    stats = api_client.get("/api/sync/stats").json()
    assert stats["total_entities"] == 2
    assert stats["synced_entities"] == 1
    assert stats["total_videos"] == 120
    assert stats["daily_quota_used"] == 7

    pending = api_client.get("/api/sync/entities/needing-full-sync").json()
    assert [entity["kind"] for entity in pending] == ["creator"]


def test_jobs_limit_is_validated(api_client):
    assert api_client.get("/api/sync/jobs?limit=0").status_code == 422


def test_incremental_batch(api_client, seed_band):
    band_id = seed_band(youtube_channel_id=CHANNEL_ID)

    response = api_client.post("/api/sync/incremental")

    assert response.status_code == 200
    data = response.json()
    assert data["started"] is True
    assert [result["entity_id"] for result in data["results"]] == [band_id]


def test_scheduler_status(api_client):
    data = api_client.get("/api/sync/scheduler").json()

    assert data["is_running"] is False
    assert data["incremental_sync_in_progress"] is False
    assert len(data["timers"]) == 5
