import json
from datetime import date

import httpx
import pytest

from tour_admin.backend import BackendError, TourBackendClient


def _client(handler, **kwargs) -> TourBackendClient:
    return TourBackendClient(
        base_url="https://functions.test",
        token="secret-token",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_get_bookings_posts_range_and_parses_items() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "result": {
                    "items": [
                        {
                            "id": 1,
                            "confirmationCode": "AUR-1",
                            "productBookings": [
                                {"startDate": "2025-01-14", "totalParticipants": 2}
                            ],
                        },
                        {"id": 2, "productBookings": [{"status": "ABORTED"}]},
                        {"id": 3, "productBookings": [{"status": "TIMEOUT"}]},
                    ]
                }
            },
        )

    bookings = await _client(handler).get_bookings(
        date(2025, 1, 1), date(2025, 1, 31)
    )

    assert [b.id for b in bookings] == ["1", "2", "3"]
    assert [b.status for b in bookings] == ["confirmed", "aborted", "timeout"]
    assert bookings[1].status_display == "Aborted"
    assert bookings[0].secondary_quantity == 2

    request = seen[0]
    assert request.url.path == "/getBookings"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert json.loads(request.content) == {
        "startDate": "2025-01-01",
        "endDate": "2025-01-31",
    }


@pytest.mark.asyncio
async def test_missing_result_is_an_empty_list() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": None})

    assert await _client(handler).get_shifts(date(2025, 1, 1), date(2025, 1, 31)) == []


@pytest.mark.asyncio
async def test_error_response_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "Not authorised"})

    with pytest.raises(BackendError) as excinfo:
        await _client(handler).get_bookings(date(2025, 1, 1), date(2025, 1, 31))

    assert excinfo.value.status_code == 403
    assert "Not authorised" in str(excinfo.value)


@pytest.mark.asyncio
async def test_transport_failure_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendError):
        await _client(handler).get_bus_assignments(date(2025, 1, 1), date(2025, 1, 2))


@pytest.mark.asyncio
async def test_bus_assignments_use_configured_capacity() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "result": {
                    "items": [
                        {"busId": "bus_1", "totalPassengers": 10, "date": "2025-01-02"}
                    ]
                }
            },
        )

    buses = await _client(handler, bus_capacity=10).get_bus_assignments(
        date(2025, 1, 1), date(2025, 1, 2)
    )

    assert buses[0].is_full


@pytest.mark.asyncio
async def test_tour_status_history_and_set() -> None:
    calls: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((request.url.path, body))
        if request.url.path == "/getTourStatusHistory":
            return httpx.Response(
                200,
                json={
                    "result": {
                        "history": [
                            {"date": "2025-01-21", "status": "ON"},
                            {"date": "2025-01-20"},
                        ]
                    }
                },
            )
        return httpx.Response(
            200,
            json={
                "result": {"success": True, "status": "OFF", "updatedByName": "Ops"}
            },
        )

    client = _client(handler)
    history = await client.get_tour_status_history(limit=7)
    result = await client.set_tour_status("OFF")

    assert [h.id for h in history] == ["2025-01-21"]
    assert result["updatedByName"] == "Ops"
    assert calls == [
        ("/getTourStatusHistory", {"data": {"limit": 7}}),
        ("/setTourStatus", {"data": {"status": "OFF", "message": "Tour canceled"}}),
    ]


@pytest.mark.asyncio
async def test_set_tour_status_rejects_unknown_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("should not be called")

    with pytest.raises(ValueError):
        await _client(handler).set_tour_status("MAYBE")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_unacknowledged_status_update_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": {"success": False}})

    with pytest.raises(BackendError):
        await _client(handler).set_tour_status("ON", "Tour is running")


@pytest.mark.asyncio
async def test_unwrapped_tour_status_answer_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "status": "ON"})

    with pytest.raises(BackendError):
        await _client(handler).set_tour_status("ON")


@pytest.mark.asyncio
async def test_callable_error_message_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            json={
                "error": {
                    "status": "PERMISSION_DENIED",
                    "message": "Only admins can update tour status",
                }
            },
        )

    with pytest.raises(BackendError) as excinfo:
        await _client(handler).get_tour_status_history()

    assert excinfo.value.status_code == 403
    assert "Only admins can update tour status" in str(excinfo.value)
