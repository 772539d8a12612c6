"""
Auth Store
==========

Local account store: users, plan tier, payment transactions and the
current session.

Features:
- Abstract AuthStore interface, JSON-file implementation
- Atomic writes (temp file + rename) so state survives restarts
- Salted PBKDF2 password hashes
- Auth-state listeners notified on login, logout and plan change
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import secrets
import string
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from signaldesk.errors import AuthError


logger = logging.getLogger(__name__)


PBKDF2_ITERATIONS = 120_000
_TXN_ALPHABET = string.ascii_uppercase + string.digits
_KEEP = object()


class UserPlan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    WALLET = "WALLET"
    CRYPTO = "CRYPTO"
    BANK = "BANK"


@dataclass
class User:
    """Public view of an account (no credentials)."""
    uid: str
    email: str
    phone: str = ""
    display_name: str = ""
    plan: UserPlan = UserPlan.FREE
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "phone": self.phone,
            "display_name": self.display_name,
            "plan": self.plan.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            uid=data["uid"],
            email=data["email"],
            phone=data.get("phone", ""),
            display_name=data.get("display_name", ""),
            plan=UserPlan(data.get("plan", UserPlan.FREE.value)),
            created_at=data.get("created_at", datetime.now(timezone.utc).isoformat()),
        )


@dataclass
class Transaction:
    """One recorded (simulated) payment."""
    id: str
    uid: str
    amount: float
    currency: str
    method: PaymentMethod
    status: str = "SUCCESS"
    date: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "amount": self.amount,
            "currency": self.currency,
            "method": self.method.value,
            "status": self.status,
            "date": self.date,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        return cls(
            id=data["id"],
            uid=data["uid"],
            amount=float(data["amount"]),
            currency=data["currency"],
            method=PaymentMethod(data["method"]),
            status=data.get("status", "SUCCESS"),
            date=data["date"],
            metadata=dict(data.get("metadata") or {}),
        )


def new_transaction_id() -> str:
    return "".join(secrets.choice(_TXN_ALPHABET) for _ in range(8))


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Return (salt_hex, hash_hex) for a password."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return salt, digest.hex()


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    _, digest = hash_password(password, salt)
    return secrets.compare_digest(digest, expected_hash)


AuthListener = Callable[["User | None"], None]


class AuthStore(ABC):
    """Account operations used by the dashboard."""

    def __init__(self):
        self._listeners: list[AuthListener] = []

    @abstractmethod
    def register(self, email: str, password: str, phone: str = "", display_name: str = "") -> User:
        """Create an account and sign it in."""

    @abstractmethod
    def login(self, email: str, password: str) -> User:
        """Sign in. Raises AuthError("invalid-credential") on mismatch."""

    @abstractmethod
    def logout(self) -> None:
        """Clear the current session."""

    @abstractmethod
    def current_user(self) -> User | None:
        """The signed-in user, if any."""

    @abstractmethod
    def get_user(self, uid: str) -> User | None:
        """Look up an account by id."""

    @abstractmethod
    def update_plan(self, uid: str, plan: UserPlan) -> User:
        """Switch a user's plan tier."""

    @abstractmethod
    def record_transaction(
        self,
        uid: str,
        amount: float,
        currency: str,
        method: PaymentMethod,
        metadata: dict | None = None,
    ) -> Transaction:
        """Store a payment record."""

    @abstractmethod
    def list_transactions(self, uid: str) -> list[Transaction]:
        """A user's transactions, newest first."""

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register a listener; it is called immediately with the current user.

        Returns an unsubscribe callable.
        """
        self._listeners.append(listener)
        listener(self.current_user())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user: User | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception as e:
                logger.error(f"Auth listener error: {e}")


class JsonAuthStore(AuthStore):
    """
    AuthStore persisted to a single JSON document.

    Layout: {"users": {uid: {..., "salt", "password_hash"}},
             "transactions": [...], "session": uid | null}
    """

    def __init__(self, path: str | Path = "data/auth.json"):
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._users: dict[str, dict] = {}
        self._transactions: list[dict] = []
        self._session: str | None = None
        self._load()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            logger.info(f"No auth store at {self._path}, starting empty")
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in auth store {self._path}: {e}")
            return
        self._users = dict(data.get("users") or {})
        self._transactions = list(data.get("transactions") or [])
        session = data.get("session")
        self._session = session if session in self._users else None
        logger.info(f"Loaded auth store: {len(self._users)} users, {len(self._transactions)} transactions")

    def _commit(
        self,
        users: dict[str, dict] | None = None,
        transactions: list[dict] | None = None,
        session: str | None | object = _KEEP,
    ) -> None:
        """
        Persist a candidate state and adopt it only once it is on disk.

        A failed write raises OSError and leaves the in-memory state untouched.
        """
        users = self._users if users is None else users
        transactions = self._transactions if transactions is None else transactions
        session = self._session if session is _KEEP else session
        self._write({"users": users, "transactions": transactions, "session": session})
        self._users, self._transactions, self._session = users, transactions, session

    def _write(self, payload: dict) -> None:
        """Atomic write: temp file + rename."""
        temp_path = self._path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(json.dumps(payload, indent=2, default=str))
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self._path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def register(self, email: str, password: str, phone: str = "", display_name: str = "") -> User:
        email = email.strip().lower()
        phone = phone.strip()
        if not email or not password:
            raise AuthError("invalid-credential", "Email and password are required")
        with self._lock:
            for record in self._users.values():
                if record["email"] == email:
                    raise AuthError("email-already-in-use")
                if phone and record.get("phone") == phone:
                    raise AuthError("phone-already-in-use")

            user = User(uid=uuid.uuid4().hex, email=email, phone=phone,
                        display_name=display_name or email.split("@")[0])
            salt, password_hash = hash_password(password)
            record = {**user.to_dict(), "salt": salt, "password_hash": password_hash}
            self._commit(users={**self._users, user.uid: record}, session=user.uid)
        logger.info(f"Registered user {user.uid}")
        self._notify(user)
        return user

    def login(self, email: str, password: str) -> User:
        email = email.strip().lower()
        with self._lock:
            record = next((r for r in self._users.values() if r["email"] == email), None)
            if record is None or not verify_password(password, record["salt"], record["password_hash"]):
                raise AuthError("invalid-credential")
            self._commit(session=record["uid"])
            user = User.from_dict(record)
        logger.info(f"User {user.uid} signed in")
        self._notify(user)
        return user

    def logout(self) -> None:
        with self._lock:
            if self._session is None:
                return
            self._commit(session=None)
        logger.info("User signed out")
        self._notify(None)

    def current_user(self) -> User | None:
        with self._lock:
            if self._session is None:
                return None
            return User.from_dict(self._users[self._session])

    def get_user(self, uid: str) -> User | None:
        with self._lock:
            record = self._users.get(uid)
            return User.from_dict(record) if record else None

    def update_plan(self, uid: str, plan: UserPlan) -> User:
        plan = UserPlan(plan)
        with self._lock:
            record = self._users.get(uid)
            if record is None:
                raise AuthError("user-not-found")
            record = {**record, "plan": plan.value}
            self._commit(users={**self._users, uid: record})
            user = User.from_dict(record)
        logger.info(f"User {uid} plan set to {plan.value}")
        if self._session == uid:
            self._notify(user)
        return user

    def record_transaction(
        self,
        uid: str,
        amount: float,
        currency: str,
        method: PaymentMethod,
        metadata: dict | None = None,
    ) -> Transaction:
        with self._lock:
            if uid not in self._users:
                raise AuthError("user-not-found")
            txn = Transaction(
                id=new_transaction_id(),
                uid=uid,
                amount=float(amount),
                currency=currency,
                method=PaymentMethod(method),
                metadata=dict(metadata or {}),
            )
            self._commit(transactions=[*self._transactions, txn.to_dict()])
        logger.info(f"Transaction {txn.id} recorded: {txn.amount} {txn.currency} via {txn.method.value}")
        return txn

    def list_transactions(self, uid: str) -> list[Transaction]:
        with self._lock:
            txns = [Transaction.from_dict(t) for t in reversed(self._transactions) if t["uid"] == uid]
        return sorted(txns, key=lambda t: t.date, reverse=True)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "path": str(self._path),
                "users": len(self._users),
                "transactions": len(self._transactions),
                "signed_in": self._session is not None,
            }
