"""
Date-bucketed aggregation of dated records for the calendar screens.

``build`` folds a fetched sequence of records into an immutable
``AggregationIndex`` keyed by calendar day. Queries never mutate the index,
so a refresh builds a new one and the owner swaps the reference.
"""

from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from types import MappingProxyType
from typing import Any, Literal, NamedTuple, Protocol
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tour_admin.config import settings

logger = structlog.get_logger(__name__)

FieldSpec = str | Callable[[Any], Any]


class DatedRecord(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def occurs_on(self) -> Any: ...

    @property
    def status(self) -> str: ...

    @property
    def secondary_quantity(self) -> int | None: ...


class MalformedRecordDate(ValueError):
    """A record's ``occurs_on`` could not be turned into a calendar day."""

    def __init__(self, value: Any, reason: str) -> None:
        super().__init__(reason)
        self.value = value
        self.reason = reason


@dataclass(frozen=True, slots=True)
class RejectedRecord:
    record: Any
    error: MalformedRecordDate

    @property
    def record_id(self) -> str | None:
        return getattr(self.record, "id", None)


@dataclass(frozen=True, slots=True)
class DayBucket:
    day: date
    records: tuple[Any, ...]
    counts_by_status: Mapping[str, int]
    total_secondary_quantity: int


class DaySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    counts_by_status: dict[str, int] = Field(default_factory=dict)
    total_secondary_quantity: int = 0


class MarkerPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["single-count", "status-dots"] = "single-count"
    max_dots: int = Field(default=3, ge=0)
    # highest priority first
    priority: tuple[str, ...] = ()


class MarkerSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["single-count", "status-dots"]
    count: int | None = None
    dots: tuple[tuple[str, bool], ...] = ()
    dominant_status: str | None = None


class AggregationIndex:
    """Read-only day -> bucket mapping for one fetched range."""

    __slots__ = ("_buckets", "tz")

    def __init__(self, buckets: Mapping[date, DayBucket], tz: tzinfo) -> None:
        self._buckets = MappingProxyType(dict(sorted(buckets.items())))
        self.tz = tz

    @property
    def buckets(self) -> Mapping[date, DayBucket]:
        return self._buckets

    @property
    def record_count(self) -> int:
        return sum(len(b.records) for b in self._buckets.values())

    def get(self, day: date) -> DayBucket | None:
        return self._buckets.get(day)

    def days_between(self, start: date, end: date) -> list[date]:
        return [d for d in self._buckets if start <= d <= end]

    def totals(self) -> DaySummary:
        counts: Counter[str] = Counter()
        total = 0
        for bucket in self._buckets.values():
            counts.update(bucket.counts_by_status)
            total += bucket.total_secondary_quantity
        return DaySummary(
            count=sum(counts.values()),
            counts_by_status=dict(sorted(counts.items())),
            total_secondary_quantity=total,
        )

    def __contains__(self, day: object) -> bool:
        return day in self._buckets

    def __iter__(self) -> Iterator[date]:
        return iter(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)


class BuildResult(NamedTuple):
    index: AggregationIndex
    rejected: tuple[RejectedRecord, ...]


def reference_zone(tz: tzinfo | str | None = None) -> tzinfo:
    if tz is None:
        tz = settings.reference_tz
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def day_key(value: Any, tz: tzinfo) -> date:
    """
    Calendar day of a raw timestamp in the reference timezone ``tz``.

    Aware datetimes are converted into ``tz``; naive datetimes and
    date-only strings are taken as already local to it. Integers are epoch
    milliseconds. Raises ``MalformedRecordDate`` for anything else.
    """
    if value is None:
        raise MalformedRecordDate(value, "missing date")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(tz).date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise MalformedRecordDate(value, "boolean is not a date")
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz).date()
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedRecordDate(value, f"bad epoch timestamp: {exc}") from exc
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise MalformedRecordDate(value, "empty date string")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedRecordDate(value, f"unparsable date {text!r}") from exc
        return day_key(parsed, tz)
    if isinstance(value, Mapping):
        try:
            return date(int(value["year"]), int(value["month"]), int(value["day"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedRecordDate(value, f"bad date parts: {exc}") from exc
    raise MalformedRecordDate(value, f"unsupported date type {type(value).__name__}")


def _bucket(day: date, records: list[Any]) -> DayBucket:
    counts = Counter(str(r.status) for r in records)
    return DayBucket(
        day=day,
        records=tuple(records),
        counts_by_status=MappingProxyType(dict(sorted(counts.items()))),
        total_secondary_quantity=sum(r.secondary_quantity or 0 for r in records),
    )


def build(
    records: Iterable[DatedRecord], tz: tzinfo | str | None = None
) -> BuildResult:
    zone = reference_zone(tz)
    grouped: dict[date, list[Any]] = {}
    rejected: list[RejectedRecord] = []

    for record in records:
        try:
            key = day_key(getattr(record, "occurs_on", None), zone)
        except MalformedRecordDate as exc:
            rejected.append(RejectedRecord(record=record, error=exc))
            continue
        grouped.setdefault(key, []).append(record)

    if rejected:
        logger.warning(
            "records_rejected",
            count=len(rejected),
            record_ids=[r.record_id for r in rejected],
        )

    index = AggregationIndex(
        {day: _bucket(day, recs) for day, recs in grouped.items()}, zone
    )
    return BuildResult(index=index, rejected=tuple(rejected))


def _as_day(index: AggregationIndex, day: date | datetime) -> date:
    if isinstance(day, datetime):
        return day_key(day, index.tz)
    return day


def bucket_for(index: AggregationIndex, day: date | datetime) -> tuple[Any, ...]:
    bucket = index.get(_as_day(index, day))
    if bucket is None:
        return ()
    return bucket.records


def summarize(index: AggregationIndex, day: date | datetime) -> DaySummary:
    bucket = index.get(_as_day(index, day))
    if bucket is None:
        return DaySummary()
    return DaySummary(
        count=len(bucket.records),
        counts_by_status=dict(bucket.counts_by_status),
        total_secondary_quantity=bucket.total_secondary_quantity,
    )


def marker_glyph(summary: DaySummary, policy: MarkerPolicy) -> MarkerSpec:
    dots = tuple(
        (status, summary.counts_by_status.get(status, 0) > 0)
        for status in policy.priority
    )
    dominant = next((status for status, present in dots if present), None)

    if policy.mode == "single-count":
        return MarkerSpec(
            mode=policy.mode, count=summary.count, dominant_status=dominant
        )
    return MarkerSpec(
        mode=policy.mode, dots=dots[: policy.max_dots], dominant_status=dominant
    )


def _field_text(record: Any, field: FieldSpec) -> str | None:
    if callable(field):
        value = field(record)
    else:
        value = record
        for part in field.split("."):
            # private and dunder attributes are never searchable
            if part.startswith("_"):
                return None
            value = getattr(value, part, None)
            if value is None:
                break
    if value is None:
        return None
    return str(value).casefold()


def search(
    index: AggregationIndex, query: str | None, fields: Sequence[FieldSpec]
) -> tuple[Any, ...]:
    if not query or not query.strip():
        return ()

    needle = query.strip().casefold()
    matches = []
    for bucket in index.buckets.values():
        for record in bucket.records:
            for field in fields:
                text = _field_text(record, field)
                if text is not None and needle in text:
                    matches.append(record)
                    break
    return tuple(matches)
