"""Trigger events and the per-execution context built from them."""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from pydantic import BaseModel, Field

MISSING = object()


class TriggerEvent(BaseModel):
    """Business event handed to the engine by the host application."""

    trigger_type: str = Field(..., description="Event type, e.g. quote_approved")
    document: dict[str, Any] = Field(
        default_factory=dict,
        description="Triggering document (quote, invoice, ticket, ...)",
    )
    actor_user_id: str | None = Field(
        default=None,
        description="User whose action raised the event",
    )
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: str | None = Field(
        default=None,
        description="Restricts matching to one tenant's workflows",
    )
    event_id: str | None = Field(
        default=None,
        description="Host id of the event; deliveries sharing it are one event",
    )

    def fingerprint(self) -> str:
        """
        Identity of this event across redeliveries.

        The host's ``event_id`` when given, otherwise a digest of the payload.
        """
        if self.event_id:
            return self.event_id
        payload = self.model_dump(
            mode="json",
            include={"trigger_type", "document", "actor_user_id", "occurred_at", "tenant_id"},
        )
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


class EventSource(Protocol):
    """Host-implemented feed of trigger events."""

    def drain(self) -> Iterable[TriggerEvent]:
        """Yield pending events; each is handed to the engine once."""
        ...


class EventContext(BaseModel):
    """What conditions and actions may read while an execution runs."""

    event: TriggerEvent
    tenant_id: str
    # Records created by earlier actions of the same execution, by kind
    created_records: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @property
    def document(self) -> dict[str, Any]:
        return self.event.document

    @property
    def actor_user_id(self) -> str | None:
        return self.event.actor_user_id

    def lookup(self, *keys: str, document_type: str | None = None) -> Any:
        """
        First present value among ``keys``.

        The triggering document is searched first, then the record of
        ``document_type`` created earlier in the execution.

        Returns:
            The value, or ``MISSING`` when no key is present
        """
        sources = [self.document]
        if document_type and document_type in self.created_records:
            sources.append(self.created_records[document_type])
        for source in sources:
            for key in keys:
                if key in source and source[key] is not None:
                    return source[key]
        return MISSING

    def record_id(self, kind: str, *document_keys: str) -> str | None:
        """Id of a record created earlier in the execution, else from the document."""
        created = self.created_records.get(kind)
        if created and created.get("id"):
            return created["id"]
        value = self.lookup(*document_keys)
        return None if value is MISSING else str(value)


__all__ = ["EventContext", "EventSource", "MISSING", "TriggerEvent"]
