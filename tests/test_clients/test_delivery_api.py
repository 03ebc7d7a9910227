"""Tests for the delivery-service client."""

import json
from decimal import Decimal

import httpx
import pytest

from delivery_dispatch.clients.delivery_api import DeliveryServiceClient
from delivery_dispatch.errors import (
    NetworkError,
    NotFoundError,
    RateLimitError,
    RemoteServiceError,
)
from delivery_dispatch.models.delivery import (
    AssignmentContext,
    Coordinates,
    DeliveryStatus,
)
from delivery_dispatch.models.order import OrderStatus, Priority

ORDER_ROW = {
    "id": 42,
    "orderNumber": "BK-0042",
    "customerName": "Maria Lopez",
    "customerPhone": "+15550142",
    "deliveryAddress": '{"street": "4 Elm Road", "landmark": "Old Mill", "city": "Shelbyville"}',
    "deliveryDate": "2026-03-02T00:00:00.000Z",
    "deliveryTime": "14:00 - 16:00",
    "status": "ready",
    "priority": None,
    "total": "31.50",
    "items": [{"productName": "Sourdough", "quantity": 2, "price": "6.50"}],
    "createdAt": "2026-03-02T10:15:00",
}


class Recorder:
    """MockTransport handler returning scripted responses."""

    def __init__(self, *responses: httpx.Response | Exception):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def make_client(settings, handler: Recorder) -> DeliveryServiceClient:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://backend.test/api/",
    )
    settings = settings.model_copy(update={"retry_delay": 0.0})
    return DeliveryServiceClient(settings, http_client=http)


def ok(data=None, **extra) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data, **extra})


@pytest.mark.asyncio
async def test_fetch_orders_by_status_reads_nested_orders(settings) -> None:
    handler = Recorder(ok({"orders": [ORDER_ROW], "pagination": {"total": 1}}))
    client = make_client(settings, handler)

    (order,) = await client.fetch_orders_by_status(OrderStatus.READY)

    request = handler.requests[0]
    assert request.url.path == "/api/orders"
    assert request.url.params["status"] == "ready"
    assert order.id == "42"
    assert order.priority == Priority.MEDIUM
    assert order.delivery_date.isoformat() == "2026-03-02"
    assert order.created_at.tzinfo is not None
    assert order.formatted_address == "4 Elm Road, Near Old Mill, Shelbyville"
    assert order.total == Decimal("31.50")
    assert order.derived_items_count() == 2


@pytest.mark.asyncio
async def test_agent_orders_are_translated_to_order_vocabulary(settings) -> None:
    row = {
        "id": "42",
        "orderNumber": "BK-0042",
        "customerAddress": "4 Elm Road",
        "status": "picked_up",
        "items": ["Sourdough x2"],
        "assignedAt": "2026-03-02T11:00:00Z",
    }
    handler = Recorder(ok([row]))
    client = make_client(settings, handler)

    (order,) = await client.fetch_orders_for_agent("7")

    assert handler.requests[0].url.path == "/api/delivery/orders/7"
    assert order.status == OrderStatus.PREPARING
    assert order.formatted_address == "4 Elm Road"
    assert order.created_at.hour == 11


@pytest.mark.asyncio
async def test_fetch_assignment(settings) -> None:
    handler = Recorder(
        ok(
            {
                "deliveryOrderId": 9,
                "deliveryBoyId": 7,
                "deliveryBoyName": "Ravi Rider",
                "deliveryStatus": "in_transit",
                "priority": "high",
                "assignedAt": "2026-03-02T11:00:00Z",
            }
        ),
        ok(None),
        httpx.Response(404, json={"success": False, "message": "Not found"}),
    )
    client = make_client(settings, handler)

    assignment = await client.fetch_assignment("42")
    assert assignment.id == "9"
    assert assignment.order_id == "42"
    assert assignment.agent_id == "7"
    assert assignment.status == DeliveryStatus.IN_TRANSIT

    assert await client.fetch_assignment("43") is None
    assert await client.fetch_assignment("44") is None


@pytest.mark.asyncio
async def test_update_delivery_status_body(settings) -> None:
    handler = Recorder(ok())
    client = make_client(settings, handler)

    await client.update_delivery_status(
        "42",
        DeliveryStatus.DELIVERED,
        photo_url="https://cdn.example.com/42.jpg",
        coordinates=Coordinates(lat=12.5, lng=77.25),
        code="1234",
    )

    request = handler.requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/api/delivery/orders/42/status"
    assert handler.last_json == {
        "status": "delivered",
        "deliveryPhotoUrl": "https://cdn.example.com/42.jpg",
        "coordinates": {"lat": 12.5, "lng": 77.25},
        "otpCode": "1234",
    }


@pytest.mark.asyncio
async def test_assign_sends_context_in_camel_case(settings) -> None:
    handler = Recorder(httpx.Response(201, json={"success": True, "deliveryOrderId": 77}))
    client = make_client(settings, handler)
    context = AssignmentContext(
        customer_name="Maria Lopez",
        customer_phone="+15550142",
        customer_address="4 Elm Road",
        delivery_date="2026-03-02",
        delivery_time="14:00 - 16:00",
        priority=Priority.HIGH,
        items_count=2,
    )

    assert await client.assign("42", "7", context) == "77"

    body = handler.last_json
    assert body["orderId"] == "42"
    assert body["deliveryBoyId"] == "7"
    assert body["customerName"] == "Maria Lopez"
    assert body["priority"] == "high"
    assert body["itemsCount"] == 2
    assert body["totalAmount"] is None


@pytest.mark.asyncio
async def test_bulk_assign_parses_partial_failure(settings) -> None:
    handler = Recorder(
        ok(
            {
                "assigned": [1, 2],
                "updated": [],
                "failed": [{"orderId": 3, "reason": "Order not found"}],
            },
            message="Bulk assignment completed",
        )
    )
    client = make_client(settings, handler)

    result = await client.bulk_assign(["1", "2", "3"], "7", Priority.LOW)

    assert handler.last_json == {"orderIds": ["1", "2", "3"], "deliveryBoyId": "7", "priority": "low"}
    assert result.assigned == ["1", "2"]
    assert result.failed[0].order_id == "3"
    assert result.failed[0].reason == "Order not found"


@pytest.mark.asyncio
async def test_history_and_workload(settings) -> None:
    handler = Recorder(
        ok(
            [
                {
                    "id": 5,
                    "oldDeliveryBoyId": None,
                    "oldDeliveryBoyName": "",
                    "newDeliveryBoyId": 7,
                    "newDeliveryBoyName": "Ravi Rider",
                    "reason": "",
                    "createdAt": "2026-03-02T09:00:00Z",
                }
            ]
        ),
        ok(
            [
                {
                    "deliveryBoyId": 7,
                    "deliveryBoyName": "Ravi Rider",
                    "totalOrders": 3,
                    "assignedCount": 1,
                    "inTransitCount": 2,
                }
            ]
        ),
    )
    client = make_client(settings, handler)

    (entry,) = await client.fetch_assignment_history("42")
    assert entry.order_id == "42"
    assert entry.previous_agent_label == "N/A"
    assert entry.reason == "Assignment"

    (row,) = await client.fetch_workload()
    assert row.agent_id == "7"
    assert row.in_transit_count == 2


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried(settings) -> None:
    handler = Recorder(httpx.Response(429, headers={"Retry-After": "20"}, json={}))
    client = make_client(settings, handler)

    with pytest.raises(RateLimitError) as exc_info:
        await client.fetch_orders_by_status("ready")

    assert exc_info.value.retry_after_seconds == 20
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_reads_retry_transport_errors(settings) -> None:
    handler = Recorder(
        httpx.ConnectError("refused"),
        httpx.ConnectError("refused"),
        ok([]),
    )
    client = make_client(settings, handler)

    assert await client.fetch_available_agents() == []
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_reads_give_up_after_max_retries(settings) -> None:
    handler = Recorder(*[httpx.ConnectError("refused")] * settings.max_retries)
    client = make_client(settings, handler)

    with pytest.raises(NetworkError):
        await client.fetch_workload()
    assert len(handler.requests) == settings.max_retries


@pytest.mark.asyncio
async def test_writes_are_not_retried(settings) -> None:
    handler = Recorder(httpx.ConnectError("refused"))
    client = make_client(settings, handler)

    with pytest.raises(NetworkError):
        await client.reassign("42", "8", "Rider sick")
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_error_statuses_and_envelopes(settings) -> None:
    handler = Recorder(
        httpx.Response(404, json={"success": False, "message": "Order not found"}),
        httpx.Response(500, json={"success": False, "message": "Database unavailable"}),
        ok(success=False, message="Order already delivered"),
        ok([{"id": 1}]),
    )
    client = make_client(settings, handler)

    with pytest.raises(NotFoundError):
        await client.update_order_status("42", OrderStatus.DELIVERED)

    with pytest.raises(RemoteServiceError) as exc_info:
        await client.reassign("42", "8")
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Database unavailable"

    with pytest.raises(RemoteServiceError) as exc_info:
        await client.update_delivery_status("42", DeliveryStatus.PICKED_UP)
    assert exc_info.value.message == "Order already delivered"

    # agent rows without a name are malformed
    with pytest.raises(RemoteServiceError):
        await client.fetch_available_agents()


@pytest.mark.asyncio
async def test_commands_are_traced(settings) -> None:
    handler = Recorder(ok([]), httpx.Response(429, json={}))
    client = make_client(settings, handler)

    await client.fetch_available_agents()
    with pytest.raises(RateLimitError):
        await client.fetch_workload()

    stats = client.tracer.get_trace_summary()["command_stats"]
    assert stats["fetch_available_agents"]["failures"] == 0
    assert stats["fetch_workload"]["failures"] == 1
    assert stats["fetch_workload"]["last_error"] == "RateLimitError"
    assert client.tracer.events[-1].metadata["status_code"] == 429
