"""Custody domain entities changed by approved authorizations."""

from .accounts import AccountRegistry, AccountStatus, ClientAccount
from .trades import InstructionTerms, Trade, TradeBook, TradeSide, TradeStatus

__all__ = [
    "AccountRegistry",
    "AccountStatus",
    "ClientAccount",
    "InstructionTerms",
    "Trade",
    "TradeBook",
    "TradeSide",
    "TradeStatus",
]
