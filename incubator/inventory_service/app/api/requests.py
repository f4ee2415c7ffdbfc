"""Material request HTTP endpoints."""

from __future__ import annotations

import json

from fastapi import APIRouter, Body, Depends, Query, status

from ..actors import Actor
from ..dependencies import get_actor, get_workflow
from ..models import MaterialRequest, RequestApproval
from ..schemas import (
    ApprovalResponse,
    ApprovalStepResponse,
    DecisionCreate,
    DelegateCreate,
    DeliveryUpdate,
    HistoryResponse,
    RequestCreate,
    RequestItemCreate,
    RequestItemResponse,
    RequestListResponse,
    RequestResponse,
)
from ..workflow import RequestWorkflow

router = APIRouter(prefix="/requests", tags=["requests"])


def _serialize_approval(approval: RequestApproval) -> ApprovalResponse:
    granted = None
    if approval.granted_json:
        granted = {int(key): value for key, value in json.loads(approval.granted_json).items()}
    return ApprovalResponse(
        id=approval.id,
        approval_level=approval.approval_level,
        approver_id=approval.approver_id,
        decision=approval.decision,
        granted=granted,
        comments=approval.comments,
        decided_at=approval.decided_at,
    )


def _serialize_request(request: MaterialRequest) -> RequestResponse:
    return RequestResponse(
        id=request.id,
        request_number=request.request_number,
        team_id=request.team_id,
        requested_by=request.requested_by,
        title=request.title,
        description=request.description,
        priority=request.priority,
        is_consumable_request=request.is_consumable_request,
        requires_quick_approval=request.requires_quick_approval,
        status=request.status,
        delivery_status=request.delivery_status,
        submitted_at=request.submitted_at,
        review_started_at=request.review_started_at,
        decided_at=request.decided_at,
        cancelled_at=request.cancelled_at,
        ordered_at=request.ordered_at,
        delivered_at=request.delivered_at,
        created_at=request.created_at,
        updated_at=request.updated_at,
        items=[RequestItemResponse.model_validate(item) for item in request.items],
        approval_chain=[ApprovalStepResponse.model_validate(step) for step in request.steps],
        approvals=[_serialize_approval(approval) for approval in request.approvals],
        history=[HistoryResponse.model_validate(entry) for entry in request.history],
    )


@router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: RequestCreate,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    request = await workflow.create_request(payload, actor)
    return _serialize_request(await workflow.get_request(request.id))


@router.get("", response_model=RequestListResponse)
async def list_requests(
    team_id: str | None = Query(default=None, alias="teamId"),
    status_value: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestListResponse:
    requests, total = await workflow.list_requests(team_id=team_id, status=status_value, limit=limit, offset=offset)
    return RequestListResponse(items=[_serialize_request(request) for request in requests], total=total)


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(request_id: int, workflow: RequestWorkflow = Depends(get_workflow)) -> RequestResponse:
    return _serialize_request(await workflow.get_request(request_id))


@router.post("/{request_id}/items", response_model=RequestResponse)
async def add_request_item(
    request_id: int,
    payload: RequestItemCreate,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.add_item(request_id, payload, actor))


@router.post("/{request_id}/submit", response_model=RequestResponse)
async def submit_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.submit(request_id, actor))


@router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: int,
    reason: str | None = Body(default=None, embed=True),
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.cancel(request_id, actor, reason=reason))


@router.post("/{request_id}/approvals/{level}", response_model=RequestResponse)
async def decide_request(
    request_id: int,
    level: int,
    payload: DecisionCreate,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.decide(request_id, level, payload, actor))


@router.post("/{request_id}/approvals/{level}/delegate", response_model=RequestResponse)
async def delegate_approval(
    request_id: int,
    level: int,
    payload: DelegateCreate,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.delegate(request_id, level, payload.delegate_to, actor))


@router.post("/{request_id}/delivery", response_model=RequestResponse)
async def update_delivery(
    request_id: int,
    payload: DeliveryUpdate,
    actor: Actor = Depends(get_actor),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestResponse:
    return _serialize_request(await workflow.update_delivery(request_id, payload.delivery_status, actor))
