"""Custody: client accounts and their closure lifecycle."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from backoffice.errors import ConflictError, ErrorCode, NotFoundError

logger = logging.getLogger(__name__)


class AccountStatus(str, Enum):
    ACTIVE = "active"
    PENDING_CLOSURE = "pending_closure"
    CLOSED = "closed"


@dataclass
class ClientAccount:
    account_id: str
    client_name: str
    status: AccountStatus = AccountStatus.ACTIVE
    closed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "client_name": self.client_name,
            "status": self.status.value,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }


class AccountRegistry:
    """Client accounts. Status changes only through the methods below."""

    def __init__(self) -> None:
        self._accounts: dict[str, ClientAccount] = {}
        self._lock = threading.Lock()

    def add(self, account: ClientAccount) -> ClientAccount:
        with self._lock:
            self._accounts[account.account_id] = account
        return account

    def get(self, account_id: str) -> ClientAccount:
        with self._lock:
            account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(
                f"Account not found: {account_id}",
                resource_type="account",
                resource_id=account_id,
            )
        return account

    def mark_pending_closure(self, account_id: str) -> AccountStatus:
        """Flag an account for closure. Returns the status it had before."""
        with self._lock:
            account = self._get_unlocked(account_id)
            if account.status != AccountStatus.ACTIVE:
                raise ConflictError(
                    f"Account {account_id} is {account.status.value}, only active accounts can be closed",
                    error_code=ErrorCode.INVALID_TRANSITION,
                )
            previous = account.status
            account.status = AccountStatus.PENDING_CLOSURE
        return previous

    def revert(self, account_id: str, status: AccountStatus) -> ClientAccount:
        with self._lock:
            account = self._get_unlocked(account_id)
            if account.status == AccountStatus.PENDING_CLOSURE:
                account.status = status
        logger.info("Account %s reverted to %s", account_id, account.status.value)
        return account

    def close(self, account_id: str, closed_at: datetime) -> ClientAccount:
        with self._lock:
            account = self._get_unlocked(account_id)
            if account.status == AccountStatus.CLOSED:
                raise ConflictError(
                    f"Account {account_id} is already closed",
                    error_code=ErrorCode.INVALID_TRANSITION,
                )
            account.status = AccountStatus.CLOSED
            account.closed_at = closed_at
        logger.info("Account %s closed", account_id)
        return account

    def _get_unlocked(self, account_id: str) -> ClientAccount:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(
                f"Account not found: {account_id}",
                resource_type="account",
                resource_id=account_id,
            )
        return account
