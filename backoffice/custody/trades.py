"""Custody: trades created from approved settlement instructions."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from backoffice.errors import ErrorCode, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class TradeStatus(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    MATCHED = "matched"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass
class Trade:
    """A trade booked against a settlement instruction."""

    trade_id: str
    instruction_id: str
    client_id: str
    instrument_id: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    created_at: datetime
    created_by: str
    status: TradeStatus = TradeStatus.DRAFT

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    def to_dict(self) -> dict:
        return {
            "trade_id": self.trade_id,
            "instruction_id": self.instruction_id,
            "client_id": self.client_id,
            "instrument_id": self.instrument_id,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "notional": str(self.notional),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class InstructionTerms:
    """Validated economic terms of an instruction payload."""

    client_id: str
    instrument_id: str
    side: TradeSide
    quantity: Decimal
    price: Decimal

    @classmethod
    def from_payload(cls, payload: dict) -> "InstructionTerms":
        for name in ("client_id", "instrument_id", "side", "quantity", "price"):
            if payload.get(name) in (None, ""):
                raise ValidationError(
                    f"{name} is required",
                    error_code=ErrorCode.MISSING_REQUIRED_FIELD,
                    field=name,
                )
        try:
            side = TradeSide(str(payload["side"]).lower())
        except ValueError:
            raise ValidationError("side must be buy or sell", field="side") from None
        try:
            quantity = Decimal(str(payload["quantity"]))
            price = Decimal(str(payload["price"]))
        except ArithmeticError:
            raise ValidationError("quantity and price must be numeric", field="quantity") from None
        if quantity <= 0:
            raise ValidationError("quantity must be positive", field="quantity")
        if price < 0:
            raise ValidationError("price must not be negative", field="price")
        return cls(
            client_id=str(payload["client_id"]),
            instrument_id=str(payload["instrument_id"]),
            side=side,
            quantity=quantity,
            price=price,
        )


class TradeBook:
    """In-memory trade store."""

    def __init__(self) -> None:
        self._trades: dict[str, Trade] = {}
        self._lock = threading.Lock()

    def create_draft_trade(
        self,
        instruction_id: str,
        terms: InstructionTerms,
        created_by: str,
        created_at: datetime,
    ) -> Trade:
        trade = Trade(
            trade_id="TRD-" + uuid.uuid4().hex[:10].upper(),
            instruction_id=instruction_id,
            client_id=terms.client_id,
            instrument_id=terms.instrument_id,
            side=terms.side,
            quantity=terms.quantity,
            price=terms.price,
            created_at=created_at,
            created_by=created_by,
        )
        with self._lock:
            self._trades[trade.trade_id] = trade
        logger.info("Draft trade %s created for instruction %s", trade.trade_id, instruction_id)
        return trade

    def get(self, trade_id: str) -> Trade:
        with self._lock:
            trade = self._trades.get(trade_id)
        if trade is None:
            raise NotFoundError(
                f"Trade not found: {trade_id}", resource_type="trade", resource_id=trade_id
            )
        return trade

    def list_trades(self, instruction_id: Optional[str] = None) -> list[Trade]:
        with self._lock:
            trades = list(self._trades.values())
        if instruction_id is not None:
            trades = [t for t in trades if t.instruction_id == instruction_id]
        return sorted(trades, key=lambda t: t.created_at)
