"""
Record variants fetched from the tour-operations backend.

Every variant carries ``id``, ``occurs_on``, ``status`` and
``secondary_quantity`` so the calendar aggregator can bucket any of them.
``occurs_on`` is kept exactly as delivered; turning it into a calendar day
happens in one place (``tour_admin.aggregator.day_key``).
"""

import re
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BUS_CAPACITY = 19


class BookingStatus(StrEnum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    ARRIVED = "arrived"
    REQUESTED = "requested"
    RESERVED = "reserved"
    REJECTED = "rejected"


class ShiftStatus(StrEnum):
    AVAILABLE = "available"
    APPLIED = "applied"
    ACCEPTED = "accepted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GuideApplicationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TourStatus(StrEnum):
    ON = "on"
    OFF = "off"


class TourType(StrEnum):
    DAY_TOUR = "day_tour"
    NORTHERN_LIGHTS = "northern_lights"


class _DatedRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True, frozen=True)

    id: str
    # raw timestamp: datetime, date, ISO string, epoch ms or {year, month, day}
    occurs_on: Any = None

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("shift_type", "tour_type", mode="before", check_fields=False)
    @classmethod
    def normalise_tour_type(cls, value: Any) -> Any:
        # shift documents store the enum name ("dayTour"), tour documents the value
        if not isinstance(value, str):
            return value
        value = value.strip()
        if "_" in value or value.isupper():
            return value.lower()
        return re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()

    @property
    def secondary_quantity(self) -> int | None:
        return None


class Customer(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PickupInfo(BaseModel):
    location: str = "Unknown"
    time: str = ""
    address: str = ""


class Participant(BaseModel):
    first_name: str = ""
    last_name: str = ""
    category: str = "Adult"


class BookingRecord(_DatedRecord):
    kind: Literal["booking"] = "booking"
    confirmation_code: str = ""
    # free-form Bokun tag; unknown values such as "aborted" are kept as-is
    status: str = BookingStatus.CONFIRMED.value
    product_title: str = "Northern Lights Tour"
    product_id: str | None = None
    total_participants: int = 0
    total_price: float = 0.0
    currency: str = "ISK"
    customer: Customer = Field(default_factory=Customer)
    pickup: PickupInfo | None = None
    participants: list[Participant] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime | None = None

    @property
    def secondary_quantity(self) -> int:
        return self.total_participants

    @property
    def customer_name(self) -> str:
        return self.customer.full_name

    @property
    def customer_email(self) -> str:
        return self.customer.email

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    @property
    def status_display(self) -> str:
        return str(self.status).replace("_", " ").title()

    @classmethod
    def from_bokun(cls, payload: dict[str, Any]) -> "BookingRecord":
        """
        Build a booking from a raw Bokun booking payload.

        The tour date, status and participant count live on the first
        product booking; top-level fields are only fallbacks.
        """
        product_bookings = payload.get("productBookings") or []
        first = product_bookings[0] if product_bookings else {}
        if not isinstance(first, dict):
            first = {}

        occurs_on = first.get("startDateTime") or first.get("startDate")
        if occurs_on is None:
            occurs_on = payload.get("startDate") or payload.get("date")

        customer_data = payload.get("customer") or {}
        customer = Customer(
            first_name=customer_data.get("firstName") or "",
            last_name=customer_data.get("lastName") or "",
            email=customer_data.get("email") or "",
            phone=customer_data.get("phoneNumber")
            or customer_data.get("phone")
            or "",
        )

        pickup = None
        pickup_data = payload.get("pickup") or payload.get("pickupPlace")
        if pickup_data:
            pickup = PickupInfo(
                location=pickup_data.get("title")
                or pickup_data.get("name")
                or "Unknown",
                time=pickup_data.get("pickupTime") or pickup_data.get("time") or "",
                address=pickup_data.get("address") or "",
            )

        participants = []
        for p in payload.get("participants") or payload.get("passengers") or []:
            category = p.get("category") or (
                (p.get("pricingCategory") or {}).get("title")
            )
            participants.append(
                Participant(
                    first_name=p.get("firstName") or "",
                    last_name=p.get("lastName") or "",
                    category=category or "Adult",
                )
            )

        total_participants = first.get("totalParticipants") or 0
        if not total_participants:
            total_participants = payload.get("totalParticipants") or len(
                participants
            )

        product = payload.get("product") or {}
        product_id = payload.get("productId") or product.get("id")
        if product_id is None:
            product_id = (first.get("product") or {}).get("id")

        return cls(
            id=str(payload.get("id") or ""),
            confirmation_code=payload.get("confirmationCode")
            or payload.get("externalBookingReference")
            or "",
            status=first.get("status") or "CONFIRMED",
            occurs_on=occurs_on,
            product_title=payload.get("productTitle")
            or product.get("title")
            or "Northern Lights Tour",
            product_id=str(product_id) if product_id is not None else None,
            total_participants=total_participants,
            total_price=payload.get("totalPrice")
            or payload.get("totalAmount")
            or 0,
            currency=payload.get("currency") or "ISK",
            customer=customer,
            pickup=pickup,
            participants=participants,
            notes=payload.get("internalNote") or payload.get("notes"),
            created_at=_parse_created(
                payload.get("createdDate") or payload.get("createdAt")
            ),
        )


def _parse_created(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class ShiftRecord(_DatedRecord):
    kind: Literal["shift"] = "shift"
    shift_type: TourType = TourType.NORTHERN_LIGHTS
    status: ShiftStatus = ShiftStatus.AVAILABLE
    start_time: str = ""
    end_time: str = ""
    guide_id: str | None = None
    guide_name: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ShiftRecord":
        return cls(
            id=str(payload.get("id") or ""),
            shift_type=payload.get("type") or TourType.NORTHERN_LIGHTS,
            status=payload.get("status") or ShiftStatus.AVAILABLE,
            occurs_on=payload.get("date"),
            start_time=payload.get("startTime") or "",
            end_time=payload.get("endTime") or "",
            guide_id=payload.get("guideId"),
            guide_name=payload.get("guideName"),
        )


class GuideApplicationRecord(_DatedRecord):
    kind: Literal["guide_application"] = "guide_application"
    guide_id: str
    guide_name: str = ""
    tour_type: TourType = TourType.NORTHERN_LIGHTS
    status: GuideApplicationStatus = GuideApplicationStatus.PENDING
    applied_at: datetime | None = None
    assigned_bus_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GuideApplicationRecord":
        guide_id = payload.get("guideId") or ""
        occurs_on = payload.get("date") or payload.get("tourDate")
        return cls(
            id=str(payload.get("id") or f"{guide_id}:{occurs_on}"),
            guide_id=guide_id,
            guide_name=payload.get("guideName") or "",
            tour_type=payload.get("tourType") or TourType.NORTHERN_LIGHTS,
            status=payload.get("status") or GuideApplicationStatus.PENDING,
            occurs_on=occurs_on,
            applied_at=_parse_created(payload.get("appliedAt")),
            assigned_bus_id=payload.get("assignedBusId"),
        )


class BusAssignmentRecord(_DatedRecord):
    kind: Literal["bus_assignment"] = "bus_assignment"
    bus_name: str = ""
    assigned_guide_id: str | None = None
    assigned_guide_name: str | None = None
    booking_ids: list[str] = Field(default_factory=list)
    total_passengers: int = 0
    max_passengers: int = DEFAULT_BUS_CAPACITY
    tour_type: TourType = TourType.NORTHERN_LIGHTS

    @property
    def status(self) -> str:
        return "full" if self.is_full else "open"

    @property
    def secondary_quantity(self) -> int:
        return self.total_passengers

    @property
    def is_full(self) -> bool:
        return self.total_passengers >= self.max_passengers

    @property
    def available_seats(self) -> int:
        return self.max_passengers - self.total_passengers

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], *, capacity: int = DEFAULT_BUS_CAPACITY
    ) -> "BusAssignmentRecord":
        return cls(
            id=str(payload.get("busId") or payload.get("id") or ""),
            bus_name=payload.get("busName") or "",
            assigned_guide_id=payload.get("assignedGuideId") or None,
            assigned_guide_name=payload.get("assignedGuideName") or None,
            booking_ids=[str(b) for b in payload.get("bookingIds") or []],
            total_passengers=payload.get("totalPassengers") or 0,
            max_passengers=payload.get("maxPassengers") or capacity,
            tour_type=payload.get("tourType") or TourType.NORTHERN_LIGHTS,
            occurs_on=payload.get("date"),
        )


class TourStatusRecord(_DatedRecord):
    kind: Literal["tour_status"] = "tour_status"
    status: TourStatus
    message: str = ""
    updated_by_name: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TourStatusRecord":
        # status documents are keyed by their yyyy-MM-dd date
        return cls(
            id=str(payload.get("date") or ""),
            occurs_on=payload.get("date"),
            status=payload.get("status"),
            message=payload.get("message") or "",
            updated_by_name=payload.get("updatedByName"),
            updated_at=_parse_created(payload.get("updatedAt")),
        )


Record = Annotated[
    BookingRecord
    | ShiftRecord
    | GuideApplicationRecord
    | BusAssignmentRecord
    | TourStatusRecord,
    Field(discriminator="kind"),
]
