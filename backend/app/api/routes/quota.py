"""Quota admin routes: status, analytics, estimation, approval, alerts, emergency mode."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.dependencies import get_quota_governor
from app.youtube.governor import QuotaGovernor
from app.youtube.schemas import (
    AlertOut,
    CostEstimate,
    DailySummaryOut,
    QuotaAnalytics,
    QuotaStatus,
    SyncCostInputs,
    SyncPriority,
    TodayUsage,
    UsageLogOut,
)

router = APIRouter()


class QuotaSummaryResponse(BaseModel):
    status: QuotaStatus
    today: TodayUsage
    unacknowledged_alerts: list[AlertOut]


class ApprovalRequest(BaseModel):
    entity_id: str
    priority: SyncPriority
    estimated_cost: int = Field(..., ge=0)
    force_approve: bool = False


class ApprovalResponse(BaseModel):
    approved: bool
    estimated_cost: int
    allocated_quota: float
    remaining_quota: int
    reason: str | None = None
    timestamp: datetime


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(..., min_length=1)


class EmergencyRequest(BaseModel):
    reason: str = "Manual activation"


@router.get("/status", response_model=QuotaStatus)
async def get_status(governor: QuotaGovernor = Depends(get_quota_governor)):
    """Current quota snapshot."""
    return await governor.status()


@router.get("/summary", response_model=QuotaSummaryResponse)
async def get_summary(governor: QuotaGovernor = Depends(get_quota_governor)):
    """Status, today's breakdown and open alerts for the dashboard."""
    report = await governor.analytics()
    return QuotaSummaryResponse(
        status=await governor.status(),
        today=report.today,
        unacknowledged_alerts=await governor.list_alerts(limit=5, unacknowledged_only=True),
    )


@router.get("/analytics", response_model=QuotaAnalytics)
async def get_analytics(governor: QuotaGovernor = Depends(get_quota_governor)):
    return await governor.analytics()


@router.get("/recommendations")
async def get_recommendations(governor: QuotaGovernor = Depends(get_quota_governor)):
    return await governor.recommendations()


@router.get("/history", response_model=list[DailySummaryOut])
async def get_history(
    days: int = Query(30, ge=1, le=365),
    governor: QuotaGovernor = Depends(get_quota_governor),
):
    return await governor.history(days)


@router.get("/usage/logs", response_model=list[UsageLogOut])
async def get_usage_logs(
    limit: int = Query(100, ge=1, le=1000),
    entity_id: str | None = None,
    operation: str | None = None,
    governor: QuotaGovernor = Depends(get_quota_governor),
):
    return await governor.usage_logs(limit, entity_id, operation)


@router.post("/estimate", response_model=CostEstimate)
async def estimate_cost(body: SyncCostInputs, governor: QuotaGovernor = Depends(get_quota_governor)):
    """Project the quota cost of a sync before running it."""
    return governor.estimate_breakdown(body)


@router.post("/approve", response_model=ApprovalResponse)
async def approve(body: ApprovalRequest, governor: QuotaGovernor = Depends(get_quota_governor)):
    """Ask for approval of a sync job. `force_approve` overrides a refusal."""
    plan = await governor.approve_sync_job(body.entity_id, body.priority, body.estimated_cost)
    remaining = await governor.remaining()

    reason = plan.reason
    if body.force_approve and not plan.approved:
        reason = f"Force approved by operator (refusal: {plan.reason})"

    return ApprovalResponse(
        approved=plan.approved or body.force_approve,
        estimated_cost=plan.estimated_cost,
        allocated_quota=plan.allocated_quota,
        remaining_quota=remaining,
        reason=reason,
        timestamp=plan.timestamp,
    )


@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(
    limit: int = Query(50, ge=1, le=500),
    unacknowledged: bool = False,
    governor: QuotaGovernor = Depends(get_quota_governor),
):
    return await governor.list_alerts(limit, unacknowledged)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertOut)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    governor: QuotaGovernor = Depends(get_quota_governor),
):
    alert = await governor.acknowledge_alert(alert_id, body.acknowledged_by)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert with ID {alert_id} not found")
    return alert


@router.post("/emergency/activate")
async def activate_emergency(
    body: EmergencyRequest | None = None,
    governor: QuotaGovernor = Depends(get_quota_governor),
):
    await governor.activate_emergency_mode(body.reason if body else "Manual activation")
    await governor.flush()
    return {"is_emergency_mode": True}


@router.post("/emergency/deactivate")
async def deactivate_emergency(governor: QuotaGovernor = Depends(get_quota_governor)):
    await governor.deactivate_emergency_mode()
    return {"is_emergency_mode": False}
