"""API routes for the dispatch service."""

import math
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from delivery_dispatch.engine.ranking import AssignmentFilter, OrderFilters, RankedOrder, SortMode
from delivery_dispatch.engine.transitions import DeliveryProof, TransitionOutcome
from delivery_dispatch.errors import (
    DispatchError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RemoteServiceError,
    TransitionError,
    ValidationError,
)
from delivery_dispatch.models.delivery import Coordinates, DeliveryStatus
from delivery_dispatch.models.order import OrderStatus, Priority
from delivery_dispatch.service import DispatchService
from delivery_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request Models


class TransitionRequest(BaseModel):
    """Request to move an order to another delivery status."""

    status: DeliveryStatus
    photo_url: str | None = None
    verification_code: str | None = None
    coordinates: Coordinates | None = None


class ProofRequest(BaseModel):
    """Delivery photo for a transition awaiting proof."""

    photo_url: str
    verification_code: str | None = None
    coordinates: Coordinates | None = None


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class AssignRequest(BaseModel):
    agent_id: str | None = None
    priority: Priority | None = None


class BulkAssignRequest(BaseModel):
    order_ids: list[str] = Field(default_factory=list)
    agent_id: str | None = None
    priority: Priority = Priority.MEDIUM


class ReassignRequest(BaseModel):
    agent_id: str | None = None
    reason: str | None = None


class MarkReadRequest(BaseModel):
    """Notification ids to mark read; omit to mark everything read."""

    ids: list[str] | None = None


# Error mapping


def to_http_exception(error: DispatchError) -> HTTPException:
    """Translate a dispatch error into the HTTP status the API reports."""
    if isinstance(error, RateLimitError):
        headers = None
        if error.retry_after_seconds is not None:
            headers = {"Retry-After": str(math.ceil(error.retry_after_seconds))}
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error.message,
            headers=headers,
        )
    if isinstance(error, TransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, (NetworkError, RemoteServiceError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


# Dependency to get the dispatch service


def get_service(request: Request) -> DispatchService:
    """Get the dispatch service the app was started with."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatch service is not running",
        )
    return service


def serialize_ranked(entry: RankedOrder) -> dict[str, Any]:
    return {
        "order": entry.order.model_dump(mode="json"),
        "assignment": entry.assignment.model_dump(mode="json") if entry.assignment else None,
        "delivery_status": entry.delivery_status.value,
        "urgency": entry.urgency.value,
        "score": entry.score,
        "agent_name": entry.agent_name,
        "is_assigned": entry.is_assigned,
    }


def serialize_outcome(outcome: TransitionOutcome) -> dict[str, Any]:
    return {
        "order_id": outcome.order_id,
        "previous_status": outcome.previous_status.value,
        "target_status": outcome.target_status.value,
        "state": outcome.state.value,
        "submitted": outcome.submitted,
    }


# Order endpoints


@router.get("/orders")
async def list_orders(
    request: Request,
    search: str | None = None,
    delivery_status: DeliveryStatus | None = Query(default=None, alias="status"),
    assignment: AssignmentFilter = AssignmentFilter.ALL,
    sort: SortMode = SortMode.PRIORITY,
) -> list[dict[str, Any]]:
    """
    Ranked, filtered delivery orders from the current snapshot.

    Delivered orders are hidden unless `status=delivered` is requested.
    """
    service = get_service(request)
    filters = OrderFilters(search=search, status=delivery_status, assignment=assignment)
    return [serialize_ranked(entry) for entry in service.ranked_orders(filters, sort)]


@router.post("/orders/refresh")
async def refresh_orders(request: Request) -> dict[str, Any]:
    """Foreground refresh; throttled calls are reported, not rejected."""
    service = get_service(request)
    outcome = await service.refresh(silent=False)
    return {"outcome": outcome.value, "sequence": service.snapshot.sequence}


@router.post("/orders/{order_id}/transition")
async def request_transition(
    order_id: str,
    body: TransitionRequest,
    request: Request,
) -> dict[str, Any]:
    """Request a delivery-status change."""
    service = get_service(request)
    proof = None
    if body.photo_url or body.verification_code or body.coordinates:
        proof = DeliveryProof(
            photo_url=body.photo_url,
            verification_code=body.verification_code,
            coordinates=body.coordinates,
        )
    outcome = await service.request_transition(order_id, body.status, proof)
    return serialize_outcome(outcome)


@router.post("/orders/{order_id}/proof")
async def attach_proof(order_id: str, body: ProofRequest, request: Request) -> dict[str, Any]:
    """Attach the delivery photo to a transition awaiting proof and submit it."""
    service = get_service(request)
    outcome = await service.attach_proof(
        order_id,
        DeliveryProof(
            photo_url=body.photo_url,
            verification_code=body.verification_code,
            coordinates=body.coordinates,
        ),
    )
    return serialize_outcome(outcome)


@router.delete("/orders/{order_id}/proof")
async def cancel_proof(order_id: str, request: Request) -> dict[str, bool]:
    """Abandon a delivery awaiting proof."""
    service = get_service(request)
    return {"cancelled": service.cancel_pending_proof(order_id)}


@router.put("/orders/{order_id}/status", status_code=status.HTTP_204_NO_CONTENT)
async def set_order_status(order_id: str, body: OrderStatusRequest, request: Request) -> None:
    """Dispatcher override of the backend order status."""
    service = get_service(request)
    await service.set_order_status(order_id, body.status)


# Assignment endpoints


@router.post("/orders/{order_id}/assign", status_code=status.HTTP_201_CREATED)
async def assign_order(order_id: str, body: AssignRequest, request: Request) -> dict[str, Any]:
    service = get_service(request)
    assignment = await service.assign(order_id, body.agent_id, body.priority)
    return assignment.model_dump(mode="json")


@router.put("/orders/{order_id}/reassign")
async def reassign_order(order_id: str, body: ReassignRequest, request: Request) -> dict[str, Any]:
    service = get_service(request)
    assignment = await service.reassign(order_id, body.agent_id, body.reason)
    return assignment.model_dump(mode="json")


@router.get("/orders/{order_id}/history")
async def assignment_history(
    order_id: str,
    request: Request,
    refresh: bool = True,
) -> list[dict[str, Any]]:
    """Assignment history, newest first."""
    service = get_service(request)
    entries = await service.assignment_history(order_id, refresh=refresh)
    return [
        {
            **entry.model_dump(mode="json"),
            "previous_agent_label": entry.previous_agent_label,
            "new_agent_label": entry.new_agent_label,
        }
        for entry in entries
    ]


@router.get("/assignments/bulk-candidates")
async def list_bulk_candidates(request: Request) -> list[dict[str, Any]]:
    """Ready, unassigned orders eligible for bulk assignment."""
    service = get_service(request)
    return [order.model_dump(mode="json") for order in service.bulk_candidates()]


@router.post("/assignments/bulk")
async def bulk_assign(body: BulkAssignRequest, request: Request) -> dict[str, Any]:
    """Assign many orders at once; partial failure is reported, not raised."""
    service = get_service(request)
    result = await service.bulk_assign(body.order_ids, body.agent_id, body.priority)
    return {
        **result.model_dump(mode="json"),
        "summary": {
            "assigned": len(result.assigned),
            "updated": len(result.updated),
            "failed": len(result.failed),
        },
    }


# Agent endpoints


@router.get("/agents")
async def available_agents(request: Request) -> list[dict[str, Any]]:
    service = get_service(request)
    return [agent.model_dump(mode="json") for agent in await service.available_agents()]


@router.get("/workload")
async def workload(request: Request) -> list[dict[str, Any]]:
    """Per-agent workload recomputed from the current snapshot."""
    service = get_service(request)
    return [row.model_dump(mode="json") for row in service.workload()]


@router.get("/workload/remote")
async def remote_workload(request: Request) -> list[dict[str, Any]]:
    """Per-agent workload as reported by the delivery service."""
    service = get_service(request)
    return [row.model_dump(mode="json") for row in await service.remote_workload()]


# Notification endpoints


@router.get("/notifications")
async def list_notifications(
    request: Request,
    limit: int | None = Query(default=None, ge=1),
    unread_only: bool = False,
) -> dict[str, Any]:
    service = get_service(request)
    notifications = await service.notifications(limit=limit, unread_only=unread_only)
    return {
        "unread_count": await service.unread_count(),
        "notifications": [n.model_dump(mode="json") for n in notifications],
    }


@router.post("/notifications/read")
async def mark_notifications_read(body: MarkReadRequest, request: Request) -> dict[str, int]:
    service = get_service(request)
    changed = await service.mark_notifications_read(body.ids)
    return {"marked": changed}


# Admin endpoints


@router.get("/admin/metrics")
async def get_metrics(request: Request) -> dict[str, Any]:
    """Sync state, snapshot size and per-command statistics."""
    service = get_service(request)
    return service.metrics()
