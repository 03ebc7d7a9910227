"""Async client for the remote delivery/order service."""

import asyncio
import time
from typing import Any, Callable, Protocol, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from delivery_dispatch.config import Settings, get_settings
from delivery_dispatch.engine.status_mapping import to_order_status
from delivery_dispatch.errors import (
    NetworkError,
    NotFoundError,
    RateLimitError,
    RemoteServiceError,
)
from delivery_dispatch.models.delivery import (
    AgentWorkload,
    AssignmentContext,
    AssignmentHistoryEntry,
    BulkAssignResult,
    Coordinates,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.order import Order, OrderStatus, Priority
from delivery_dispatch.utils.logging import get_logger
from delivery_dispatch.utils.tracing import CommandTracer

logger = get_logger(__name__)

T = TypeVar("T")

ORDER_PAGE_LIMIT = 100
DELIVERY_STATUS_VALUES = {status.value for status in DeliveryStatus}


class DeliveryBackend(Protocol):
    """Commands the dispatch engine issues to the remote service."""

    async def fetch_orders_by_status(self, status: OrderStatus | str) -> list[Order]: ...

    async def fetch_orders_for_agent(self, agent_id: str) -> list[Order]: ...

    async def fetch_assignment(self, order_id: str) -> DeliveryAssignment | None: ...

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None: ...

    async def update_delivery_status(
        self,
        order_id: str,
        status: DeliveryStatus,
        photo_url: str | None = None,
        coordinates: Coordinates | None = None,
        code: str | None = None,
    ) -> None: ...

    async def assign(self, order_id: str, agent_id: str, context: AssignmentContext) -> str | None: ...

    async def bulk_assign(
        self, order_ids: list[str], agent_id: str, priority: Priority
    ) -> BulkAssignResult: ...

    async def reassign(self, order_id: str, agent_id: str, reason: str | None = None) -> None: ...

    async def fetch_assignment_history(self, order_id: str) -> list[AssignmentHistoryEntry]: ...

    async def fetch_workload(self) -> list[AgentWorkload]: ...

    async def fetch_available_agents(self) -> list[DeliveryAgent]: ...


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP error! status: {response.status_code}"


def _parse(command: str, build: Callable[[], T]) -> T:
    """Run a payload conversion, reporting malformed payloads as remote failures."""
    try:
        return build()
    except PydanticValidationError as e:
        raise RemoteServiceError(
            f"Unexpected {command} payload from the delivery service: {e.error_count()} errors"
        ) from e


def _agent_order(item: dict[str, Any]) -> Order:
    """Agent order rows use delivery vocabulary and name the address differently."""
    payload = dict(item)
    status = payload.get("status")
    if status in DELIVERY_STATUS_VALUES:
        payload["status"] = to_order_status(status).value
    if "deliveryAddress" not in payload and "customerAddress" in payload:
        payload["deliveryAddress"] = payload["customerAddress"]
    payload.setdefault("createdAt", payload.get("assignedAt") or payload.get("updatedAt"))
    return Order.model_validate(payload)


class DeliveryServiceClient:
    """Speaks the backend's ``{success, message, data}`` JSON envelope.

    Transport failures and HTTP status codes are converted into the
    DispatchError hierarchy here, so nothing above this layer sees httpx
    exceptions. Reads retry transport failures with exponential backoff;
    a 429 is never retried inside the client.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        tracer: CommandTracer | None = None,
    ):
        self.settings = settings or get_settings()
        self.tracer = tracer or CommandTracer()
        headers = {"Content-Type": "application/json"}
        if self.settings.delivery_api_token:
            headers["Authorization"] = f"Bearer {self.settings.delivery_api_token}"
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=self.settings.delivery_api_url.rstrip("/") + "/",
            headers=headers,
            timeout=self.settings.request_timeout,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
        retry: bool,
    ) -> httpx.Response:
        attempts = max(self.settings.max_retries, 1) if retry else 1
        for attempt in range(attempts):
            try:
                return await self.http.request(method, path.lstrip("/"), params=params, json=json)
            except httpx.TransportError as e:
                if attempt + 1 >= attempts:
                    raise NetworkError(f"Delivery service unreachable: {e}") from e
                delay = self.settings.retry_delay * (2**attempt)
                logger.warning(
                    "delivery_request_retry",
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
        raise NetworkError("Delivery service unreachable")

    async def _request(
        self,
        command: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """Issue one command and return the decoded envelope.

        Returns None for a 404 when ``allow_not_found`` is set.
        """
        start = time.time()
        with self.tracer.trace_operation(command, method=method, path=path) as trace:
            response = await self._send(method, path, params, json, retry=method == "GET")
            trace["status_code"] = response.status_code

            if response.status_code == 429:
                raise RateLimitError(_retry_after(response))
            if response.status_code == 404:
                if allow_not_found:
                    return None
                raise NotFoundError(_error_message(response))
            if response.is_error:
                raise RemoteServiceError(_error_message(response), response.status_code)

            try:
                body = response.json()
            except ValueError as e:
                raise RemoteServiceError(
                    "Delivery service returned a non-JSON body", response.status_code
                ) from e
            if not isinstance(body, dict):
                body = {"success": True, "data": body}
            if body.get("success") is False:
                raise RemoteServiceError(
                    body.get("message") or f"{command} failed", response.status_code
                )

        logger.debug(
            "delivery_request_completed",
            command=command,
            status_code=response.status_code,
            duration_ms=(time.time() - start) * 1000,
        )
        return body

    # Reads

    async def fetch_orders_by_status(self, status: OrderStatus | str) -> list[Order]:
        """Orders in one backend status (``GET /orders``)."""
        status_value = status.value if isinstance(status, OrderStatus) else status
        body = await self._request(
            "fetch_orders_by_status",
            "GET",
            "/orders",
            params={"status": status_value, "limit": ORDER_PAGE_LIMIT},
        )
        data = body.get("data") or []
        if isinstance(data, dict):
            data = data.get("orders") or []
        return _parse(
            "fetch_orders_by_status",
            lambda: [Order.model_validate(item) for item in data],
        )

    async def fetch_orders_for_agent(self, agent_id: str) -> list[Order]:
        """Orders assigned to one delivery agent."""
        body = await self._request("fetch_orders_for_agent", "GET", f"/delivery/orders/{agent_id}")
        return _parse(
            "fetch_orders_for_agent",
            lambda: [_agent_order(item) for item in body.get("data") or []],
        )

    async def fetch_assignment(self, order_id: str) -> DeliveryAssignment | None:
        """Current assignment of an order, or None when it has none."""
        body = await self._request(
            "fetch_assignment",
            "GET",
            f"/delivery/order-assignment/{order_id}",
            allow_not_found=True,
        )
        if body is None or not body.get("data"):
            return None
        return _parse(
            "fetch_assignment",
            lambda: DeliveryAssignment.model_validate({"orderId": order_id, **body["data"]}),
        )

    async def fetch_assignment_history(self, order_id: str) -> list[AssignmentHistoryEntry]:
        body = await self._request(
            "fetch_assignment_history", "GET", f"/delivery/assignment-history/{order_id}"
        )
        return _parse(
            "fetch_assignment_history",
            lambda: [
                AssignmentHistoryEntry.model_validate({"orderId": order_id, **item})
                for item in body.get("data") or []
            ],
        )

    async def fetch_workload(self) -> list[AgentWorkload]:
        body = await self._request("fetch_workload", "GET", "/delivery/workload")
        return _parse(
            "fetch_workload",
            lambda: [AgentWorkload.model_validate(item) for item in body.get("data") or []],
        )

    async def fetch_available_agents(self) -> list[DeliveryAgent]:
        body = await self._request(
            "fetch_available_agents", "GET", "/delivery/available-delivery-boys"
        )
        return _parse(
            "fetch_available_agents",
            lambda: [DeliveryAgent.model_validate(item) for item in body.get("data") or []],
        )

    # Commands

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self._request(
            "update_order_status",
            "PUT",
            f"/orders/{order_id}",
            json={"status": OrderStatus(status).value},
        )

    async def update_delivery_status(
        self,
        order_id: str,
        status: DeliveryStatus,
        photo_url: str | None = None,
        coordinates: Coordinates | None = None,
        code: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"status": DeliveryStatus(status).value}
        if photo_url:
            payload["deliveryPhotoUrl"] = photo_url
        if coordinates is not None:
            payload["coordinates"] = coordinates.model_dump()
        if code:
            payload["otpCode"] = code
        await self._request(
            "update_delivery_status",
            "PUT",
            f"/delivery/orders/{order_id}/status",
            json=payload,
        )

    async def assign(self, order_id: str, agent_id: str, context: AssignmentContext) -> str | None:
        """Create a delivery assignment; returns the backend's assignment id."""
        payload = {
            "orderId": order_id,
            "deliveryBoyId": agent_id,
            **context.model_dump(mode="json", by_alias=True),
        }
        body = await self._request("assign", "POST", "/delivery/orders", json=payload)
        assignment_id = body.get("deliveryOrderId")
        if assignment_id is None and isinstance(body.get("data"), dict):
            assignment_id = body["data"].get("deliveryOrderId")
        return str(assignment_id) if assignment_id is not None else None

    async def bulk_assign(
        self, order_ids: list[str], agent_id: str, priority: Priority = Priority.MEDIUM
    ) -> BulkAssignResult:
        body = await self._request(
            "bulk_assign",
            "POST",
            "/delivery/bulk-assign",
            json={
                "orderIds": order_ids,
                "deliveryBoyId": agent_id,
                "priority": Priority(priority).value,
            },
        )
        return _parse(
            "bulk_assign", lambda: BulkAssignResult.model_validate(body.get("data") or {})
        )

    async def reassign(self, order_id: str, agent_id: str, reason: str | None = None) -> None:
        await self._request(
            "reassign",
            "PUT",
            f"/delivery/reassign/{order_id}",
            json={"deliveryBoyId": agent_id, "reason": reason},
        )
