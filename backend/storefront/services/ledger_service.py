# Overview: Service-layer operations for the audit ledger; append-only writes and reads.

from __future__ import annotations

import json
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
"""
Audit Ledger Invariants (authoritative)

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    order_id: int | None = None,
    note: Optional[str] = None,
    payload: dict | str | None = None,
) -> AuditEvent:
    """
    Append an audit event to the current transaction.

    Never commits; the caller's commit (or rollback) decides whether it exists.
    """
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload, sort_keys=True)

    ev = AuditEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        order_id=order_id,
        note=note[:255] if note else note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    order_id: int | None = None,
    event_category: str | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    query = db.session.query(AuditEvent)
    if order_id is not None:
        query = query.filter(AuditEvent.order_id == order_id)
    if event_category:
        query = query.filter(AuditEvent.event_category == event_category)
    return query.order_by(AuditEvent.id.asc()).limit(limit).all()
