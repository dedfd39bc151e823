"""Position Reconciliation: feed ingestion.

Upstream custodians (CSCS, NGX, Flexcube, ...) are reached through the
:class:`FeedSource` capability. Whatever the wire format, a source hands
back an immutable :class:`PositionSnapshot`; the matcher never sees
anything else.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional, Protocol

import httpx

from backoffice.errors import ErrorCode, UnavailableError, ValidationError

logger = logging.getLogger(__name__)


def _to_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(
            f"{name} must be numeric, got {value!r}", field=name
        ) from e


@dataclass(frozen=True)
class PositionRecord:
    """One holding of one instrument by one owner, as reported by a source."""

    source_system: str
    instrument_id: str  # ISIN
    owner_id: str
    quantity: Decimal
    notional_value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", _to_decimal(self.quantity, "quantity"))
        object.__setattr__(
            self, "notional_value", _to_decimal(self.notional_value, "notional_value")
        )

    @property
    def key(self) -> tuple[str, str]:
        """Join key: (owner, instrument)."""
        return (self.owner_id, self.instrument_id)

    @classmethod
    def from_dict(cls, source_system: str, data: dict) -> "PositionRecord":
        missing = [
            k for k in ("instrument_id", "owner_id", "quantity", "notional_value")
            if data.get(k) is None
        ]
        if missing:
            raise ValidationError(
                f"Position record from {source_system} is missing {', '.join(missing)}",
                error_code=ErrorCode.MISSING_REQUIRED_FIELD,
                field=missing[0],
            )
        return cls(
            source_system=source_system,
            instrument_id=str(data["instrument_id"]),
            owner_id=str(data["owner_id"]),
            quantity=data["quantity"],
            notional_value=data["notional_value"],
        )

    def to_dict(self) -> dict:
        return {
            "source_system": self.source_system,
            "instrument_id": self.instrument_id,
            "owner_id": self.owner_id,
            "quantity": str(self.quantity),
            "notional_value": str(self.notional_value),
        }


@dataclass(frozen=True)
class PositionSnapshot:
    """All records pulled from one source in one feed pull."""

    source_id: str
    records: tuple[PositionRecord, ...]
    ingested_at: datetime
    snapshot_id: str = field(init=False)

    def __post_init__(self) -> None:
        records = tuple(self.records)
        object.__setattr__(self, "records", records)

        seen: set[tuple[str, str]] = set()
        for rec in records:
            if rec.key in seen:
                raise ValidationError(
                    f"Duplicate position for owner {rec.owner_id} "
                    f"instrument {rec.instrument_id} in {self.source_id} snapshot",
                    error_code=ErrorCode.DUPLICATE_POSITION,
                    field="instrument_id",
                )
            seen.add(rec.key)

        object.__setattr__(self, "snapshot_id", self._content_hash())

    def _content_hash(self) -> str:
        h = hashlib.sha256()
        h.update(self.source_id.encode("utf-8"))
        h.update(self.ingested_at.isoformat().encode("utf-8"))
        for rec in sorted(self.records, key=lambda r: r.key):
            h.update(
                f"|{rec.owner_id}|{rec.instrument_id}|{rec.quantity}|{rec.notional_value}".encode("utf-8")
            )
        return h.hexdigest()[:16]

    def by_key(self) -> dict[tuple[str, str], PositionRecord]:
        return {rec.key: rec for rec in self.records}

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class CashVarianceRecord:
    """Ledger balance against expected balance for one account. Display only."""

    account: str
    ledger_amount: Decimal
    expected_amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "ledger_amount", _to_decimal(self.ledger_amount, "ledger_amount"))
        object.__setattr__(
            self, "expected_amount", _to_decimal(self.expected_amount, "expected_amount")
        )

    @property
    def variance(self) -> Decimal:
        return self.ledger_amount - self.expected_amount

    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "ledger_amount": str(self.ledger_amount),
            "expected_amount": str(self.expected_amount),
            "variance": str(self.variance),
        }


class FeedSource(Protocol):
    """Capability for pulling a position snapshot from a named source."""

    def fetch_snapshot(self, source_id: str) -> PositionSnapshot:
        ...


class CashLedgerSource(Protocol):
    def fetch_cash_records(self) -> list[CashVarianceRecord]:
        ...


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryFeedSource:
    """Feed source backed by fixtures loaded in memory.

    Unknown or unavailable sources raise :class:`UnavailableError` so a
    missing feed is never confused with an empty one.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or _utcnow
        self._records: dict[str, list[PositionRecord]] = {}
        self._ingested_at: dict[str, datetime] = {}
        self._unavailable: set[str] = set()
        self._lock = threading.Lock()

    def load(
        self,
        source_id: str,
        records: Iterable[PositionRecord],
        ingested_at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            self._records[source_id] = list(records)
            if ingested_at is not None:
                self._ingested_at[source_id] = ingested_at
            else:
                self._ingested_at.pop(source_id, None)
            self._unavailable.discard(source_id)

    def mark_unavailable(self, source_id: str) -> None:
        with self._lock:
            self._unavailable.add(source_id)

    def fetch_snapshot(self, source_id: str) -> PositionSnapshot:
        with self._lock:
            if source_id in self._unavailable or source_id not in self._records:
                raise UnavailableError(
                    f"Feed {source_id} is unavailable",
                    error_code=ErrorCode.FEED_UNAVAILABLE,
                    source=source_id,
                )
            records = list(self._records[source_id])
            ingested_at = self._ingested_at.get(source_id) or self._clock()
        return PositionSnapshot(source_id=source_id, records=tuple(records), ingested_at=ingested_at)


class InMemoryCashLedger:
    def __init__(self, records: Optional[Iterable[CashVarianceRecord]] = None) -> None:
        self._records = list(records or [])

    def fetch_cash_records(self) -> list[CashVarianceRecord]:
        return list(self._records)


def _parse_timestamp(raw: Any, source: str) -> datetime:
    """ISO-8601 timestamp from a feed payload; a naive value is read as UTC."""
    try:
        parsed = datetime.fromisoformat(str(raw))
    except ValueError as e:
        raise UnavailableError(
            f"Feed {source} returned a malformed ingested_at: {raw!r}",
            error_code=ErrorCode.FEED_UNAVAILABLE,
            source=source,
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpFeedSource:
    """Feed source that pulls snapshots from an HTTP gateway.

    Expects ``GET {base_url}/snapshots/{source_id}`` to return::

        {"ingested_at": "...", "records": [{"instrument_id": ..., "owner_id": ...,
          "quantity": ..., "notional_value": ...}, ...]}

    Timeouts, transport failures and non-2xx responses are all reported as
    :class:`UnavailableError`.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._clock = clock or _utcnow
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, source: str) -> Any:
        try:
            resp = self._client.get(path)
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            logger.warning("Feed %s timed out: %s", source, e)
            raise UnavailableError(
                f"Feed {source} timed out",
                error_code=ErrorCode.FEED_UNAVAILABLE,
                source=source,
            ) from e
        except httpx.HTTPStatusError as e:
            logger.warning("Feed %s returned HTTP %d", source, e.response.status_code)
            raise UnavailableError(
                f"Feed {source} returned HTTP {e.response.status_code}",
                error_code=ErrorCode.FEED_UNAVAILABLE,
                source=source,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Feed %s unreachable: %s", source, e)
            raise UnavailableError(
                f"Feed {source} is unreachable",
                error_code=ErrorCode.FEED_UNAVAILABLE,
                source=source,
            ) from e
        except ValueError as e:
            raise UnavailableError(
                f"Feed {source} returned a malformed payload",
                error_code=ErrorCode.FEED_UNAVAILABLE,
                source=source,
            ) from e

    def fetch_snapshot(self, source_id: str) -> PositionSnapshot:
        payload = self._get(f"/snapshots/{source_id}", source_id)
        records = [
            PositionRecord.from_dict(source_id, item)
            for item in payload.get("records", [])
        ]
        raw_ts = payload.get("ingested_at")
        ingested_at = _parse_timestamp(raw_ts, source_id) if raw_ts else self._clock()
        logger.info("Fetched %d positions from %s", len(records), source_id)
        return PositionSnapshot(source_id=source_id, records=tuple(records), ingested_at=ingested_at)

    def fetch_cash_records(self) -> list[CashVarianceRecord]:
        payload = self._get("/cash-ledger", "cash-ledger")
        return [
            CashVarianceRecord(
                account=str(item["account"]),
                ledger_amount=item["ledger_amount"],
                expected_amount=item["expected_amount"],
            )
            for item in payload.get("records", [])
        ]


class SnapshotStore:
    """Latest snapshot per source, shared by reconciliation runs."""

    def __init__(self) -> None:
        self._latest: dict[str, PositionSnapshot] = {}
        self._lock = threading.Lock()

    def put(self, snapshot: PositionSnapshot) -> None:
        with self._lock:
            self._latest[snapshot.source_id] = snapshot
        logger.debug(
            "Stored snapshot %s for %s (%d records)",
            snapshot.snapshot_id,
            snapshot.source_id,
            len(snapshot),
        )

    def latest(self, source_id: str) -> Optional[PositionSnapshot]:
        with self._lock:
            return self._latest.get(source_id)
