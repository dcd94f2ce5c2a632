from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
import weakref
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from ..models.schemas import Subscription, UsageStats, UserRecord


class UserStoreError(Exception):
    """Raised when a user record cannot be read or written."""


class UserStore:
    """In-process user records, credentials, bearer tokens and payment bookkeeping.

    ``load`` hands out copies so that a caller abandoning a request never leaves a
    half-mutated record behind; changes only land through ``save``.
    """

    def __init__(self, free_ceiling: int = 2) -> None:
        self.free_ceiling = free_ceiling
        self.users: Dict[str, UserRecord] = {}
        self.credentials: Dict[str, str] = {}
        self.session_tokens: Dict[str, str] = {}
        self.orders: Dict[str, str] = {}
        self.consumed_payments: Set[str] = set()
        # Idle locks are collected once no request holds or waits on them.
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _hash_password(self, password: str, salt: str | None = None) -> str:
        salt = salt or secrets.token_hex(8)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 100_000).hex()
        return f"{salt}${digest}"

    def register(
        self,
        user_id: str,
        email: str | None = None,
        display_name: str | None = None,
        password: str | None = None,
    ) -> UserRecord:
        now = datetime.now(timezone.utc)
        record = UserRecord(
            id=user_id,
            email=email.lower() if email else None,
            display_name=display_name,
            usage_stats=UsageStats(
                subscription=Subscription(start_date=now, ceiling=self.free_ceiling),
            ),
        )
        self.users[user_id] = record
        if password is not None:
            self.credentials[user_id] = self._hash_password(password)
        return record.model_copy(deep=True)

    def email_exists(self, email: str) -> bool:
        email = email.lower()
        return any(user.email == email for user in self.users.values())

    def authenticate(self, email: str, password: str) -> Optional[str]:
        email = email.lower()
        for user_id, user in self.users.items():
            stored = self.credentials.get(user_id)
            if user.email != email or not stored:
                continue
            salt = stored.split("$", 1)[0]
            if hmac.compare_digest(stored, self._hash_password(password, salt)):
                return user_id
        return None

    def issue_session_token(self, user_id: str) -> str:
        if user_id not in self.users:
            raise KeyError(user_id)
        token = secrets.token_hex(16)
        for existing_token, existing_user_id in list(self.session_tokens.items()):
            if existing_user_id == user_id:
                self.session_tokens.pop(existing_token, None)
        self.session_tokens[token] = user_id
        return token

    def resolve_session_token(self, token: str) -> Optional[str]:
        return self.session_tokens.get(token)

    def revoke_session_token(self, token: str) -> None:
        self.session_tokens.pop(token, None)

    def record_order(self, order_id: str, user_id: str) -> None:
        self.orders[order_id] = user_id

    def order_owner(self, order_id: str) -> Optional[str]:
        return self.orders.get(order_id)

    def payment_consumed(self, payment_id: str) -> bool:
        return payment_id in self.consumed_payments

    def consume_payment(self, order_id: str, payment_id: str) -> None:
        """Mark a verified payment as spent; its order cannot be verified again."""
        self.consumed_payments.add(payment_id)
        self.orders.pop(order_id, None)

    def user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    async def load(self, user_id: str) -> Optional[UserRecord]:
        record = self.users.get(user_id)
        if record is None:
            return None
        return record.model_copy(deep=True)

    async def save(self, record: UserRecord) -> None:
        if record.id not in self.users:
            raise UserStoreError(f"Unknown user {record.id}")
        self.users[record.id] = record.model_copy(deep=True)
