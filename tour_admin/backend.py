"""
Client for the remote tour-operations functions.

Every call is a JSON POST to ``{base_url}/{function}``. Failures surface
as ``BackendError``; there is no retry here, the caller keeps whatever it
loaded last.
"""

from collections.abc import Callable
from datetime import date
from typing import Any, Literal, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from tour_admin.config import settings
from tour_admin.models import (
    BookingRecord,
    BusAssignmentRecord,
    GuideApplicationRecord,
    ShiftRecord,
    TourStatusRecord,
)

logger = structlog.get_logger(__name__)

R = TypeVar("R")

TOUR_STATUS_MESSAGES = {"ON": "Tour is running", "OFF": "Tour canceled"}


class BackendError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _format_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and body.get("error"):
        error = body["error"]
        # callable functions answer {"error": {"status": ..., "message": ...}}
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return str(error)
    return response.text


def _parse_items(
    function: str, items: list[Any], parse: Callable[[dict[str, Any]], R]
) -> list[R]:
    records = []
    for item in items:
        try:
            records.append(parse(item))
        except (ValidationError, AttributeError, TypeError) as exc:
            item_id = item.get("id") if isinstance(item, dict) else None
            logger.warning(
                "backend_item_skipped",
                function=function,
                item_id=item_id,
                error=str(exc),
            )
    return records


class TourBackendClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        timeout: float | None = None,
        bus_capacity: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.token = token if token is not None else settings.backend_token
        self.timeout = timeout or settings.backend_timeout_seconds
        self.bus_capacity = bus_capacity or settings.max_passengers_per_bus
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _call(self, function: str, payload: dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"/{function}", json=payload, headers=self._headers()
                )
        except httpx.HTTPError as exc:
            logger.error("backend_unreachable", function=function, error=str(exc))
            raise BackendError(f"{function} failed: {exc}") from exc

        if response.status_code != 200:
            detail = _error_detail(response)
            logger.error(
                "backend_call_failed",
                function=function,
                status_code=response.status_code,
                detail=detail,
            )
            raise BackendError(
                f"{function} failed: {detail}", status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{function} returned invalid JSON") from exc

    async def _invoke(self, function: str, data: dict[str, Any]) -> Any:
        """
        Call an ``onCall`` function: the payload travels as ``{"data": ...}``
        and the answer comes back as ``{"result": ...}``.
        """
        body = await self._call(function, {"data": data})
        if not isinstance(body, dict) or "result" not in body:
            raise BackendError(f"{function} returned no result")
        return body["result"]

    async def _fetch_range(
        self,
        function: str,
        start: date,
        end: date,
        parse: Callable[[dict[str, Any]], R],
    ) -> list[R]:
        data = await self._call(
            function,
            {"startDate": _format_date(start), "endDate": _format_date(end)},
        )
        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict) or not result.get("items"):
            return []
        records = _parse_items(function, result["items"], parse)
        logger.info(
            "backend_range_fetched",
            function=function,
            start=_format_date(start),
            end=_format_date(end),
            records=len(records),
        )
        return records

    async def get_bookings(self, start: date, end: date) -> list[BookingRecord]:
        return await self._fetch_range(
            "getBookings", start, end, BookingRecord.from_bokun
        )

    async def get_shifts(self, start: date, end: date) -> list[ShiftRecord]:
        return await self._fetch_range(
            "getShifts", start, end, ShiftRecord.from_payload
        )

    async def get_guide_applications(
        self, start: date, end: date
    ) -> list[GuideApplicationRecord]:
        return await self._fetch_range(
            "getGuideApplications", start, end, GuideApplicationRecord.from_payload
        )

    async def get_bus_assignments(
        self, start: date, end: date
    ) -> list[BusAssignmentRecord]:
        return await self._fetch_range(
            "getBusAssignments",
            start,
            end,
            lambda item: BusAssignmentRecord.from_payload(
                item, capacity=self.bus_capacity
            ),
        )

    async def get_tour_status_history(
        self, limit: int | None = None
    ) -> list[TourStatusRecord]:
        limit = limit or settings.tour_status_history_limit
        data = await self._invoke("getTourStatusHistory", {"limit": limit})
        history = data.get("history") if isinstance(data, dict) else None
        return _parse_items(
            "getTourStatusHistory", history or [], TourStatusRecord.from_payload
        )

    async def set_tour_status(
        self, status: Literal["ON", "OFF"], message: str | None = None
    ) -> dict[str, Any]:
        if status not in TOUR_STATUS_MESSAGES:
            raise ValueError('Status must be "ON" or "OFF"')
        data = await self._invoke(
            "setTourStatus",
            {"status": status, "message": message or TOUR_STATUS_MESSAGES[status]},
        )
        if not isinstance(data, dict) or data.get("success") is not True:
            raise BackendError("setTourStatus was not acknowledged")
        logger.info(
            "tour_status_set", status=status, updated_by=data.get("updatedByName")
        )
        return data
