"""
External collaborators mutated by action handlers.

The host application implements these protocols against its real record
stores and mail service. Every call carries an idempotency key (the
execution step id): a repeated key must not repeat the effect.

The in-memory implementations back tests and embedded use.
"""
import threading
import uuid
from typing import Any, Protocol

from workflow_automation.observability import get_logger

logger = get_logger(__name__)


class RecordStore(Protocol):
    """Quotes, projects, invoices, tickets... of the host application."""

    def create(self, kind: str, fields: dict[str, Any], idempotency_key: str) -> str:
        """Create a record of ``kind`` and return its id."""
        ...

    def update(self, kind: str, record_id: str, fields: dict[str, Any]) -> None:
        """Set ``fields`` on an existing record."""
        ...


class Mailer(Protocol):
    """Outbound mail hand-off."""

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Queue a message and return its id."""
        ...


class UserDirectory(Protocol):
    """Resolves round-robin assignees."""

    def next_round_robin_user(
        self,
        tenant_id: str,
        pool: list[str],
        idempotency_key: str,
    ) -> str | None:
        """Next user of the rotation; the same key yields the same user."""
        ...


class InMemoryRecordStore:
    """Thread-safe record store keeping everything in dicts."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self.updates: list[tuple[str, str, dict[str, Any]]] = []
        self._keys: dict[str, tuple[str, str]] = {}

    def create(self, kind: str, fields: dict[str, Any], idempotency_key: str) -> str:
        with self._lock:
            if idempotency_key in self._keys:
                _, record_id = self._keys[idempotency_key]
                logger.info(
                    "Record already created for idempotency key",
                    extra={"kind": kind, "record_id": record_id},
                )
                return record_id
            record_id = str(uuid.uuid4())
            self.records.setdefault(kind, {})[record_id] = {"id": record_id, **fields}
            self._keys[idempotency_key] = (kind, record_id)
            return record_id

    def update(self, kind: str, record_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            record = self.records.setdefault(kind, {}).setdefault(record_id, {"id": record_id})
            record.update(fields)
            self.updates.append((kind, record_id, dict(fields)))

    def all(self, kind: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self.records.get(kind, {}).values()]

    def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self.records.get(kind, {}).get(record_id)
            return dict(record) if record else None


class InMemoryMailer:
    """Collects messages instead of delivering them."""

    def __init__(self):
        self._lock = threading.Lock()
        self.outbox: list[dict[str, Any]] = []
        self._keys: dict[str, str] = {}

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        with self._lock:
            if idempotency_key in self._keys:
                return self._keys[idempotency_key]
            message_id = str(uuid.uuid4())
            self.outbox.append({
                "id": message_id,
                "to": to,
                "subject": subject,
                "body": body,
                "metadata": metadata or {},
            })
            self._keys[idempotency_key] = message_id
            return message_id


class InMemoryUserDirectory:
    """Round-robin over per-tenant user lists."""

    def __init__(self, users_by_tenant: dict[str, list[str]] | None = None):
        self._lock = threading.Lock()
        self._users = users_by_tenant or {}
        self._cursor: dict[str, int] = {}
        self._keys: dict[str, str] = {}

    def next_round_robin_user(
        self,
        tenant_id: str,
        pool: list[str],
        idempotency_key: str,
    ) -> str | None:
        with self._lock:
            if idempotency_key in self._keys:
                return self._keys[idempotency_key]
            candidates = pool or self._users.get(tenant_id, [])
            if not candidates:
                return None
            rotation = f"{tenant_id}:{','.join(candidates)}"
            index = self._cursor.get(rotation, 0)
            user = candidates[index % len(candidates)]
            self._cursor[rotation] = index + 1
            self._keys[idempotency_key] = user
            return user
