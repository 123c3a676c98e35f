# Overview: Append-only audit ledger writes and reads.

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import LedgerEvent
"""
Ledger invariants

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_id: str | None = None,
    terminal_id: str | None = None,
    shift_id: int | None = None,
    order_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> LedgerEvent:
    """
    Append one event. Flushes so the id is assigned; the caller commits.
    """
    ev = LedgerEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        terminal_id=terminal_id,
        shift_id=shift_id,
        order_id=order_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_ledger_events(
    *,
    event_category: str | None = None,
    shift_id: int | None = None,
    order_id: int | None = None,
    cursor: int | None = None,
    limit: int = 50,
) -> tuple[list[LedgerEvent], int | None]:
    """
    Newest-first page of events. cursor is the last id of the previous page.
    Returns (events, next_cursor).
    """
    query = db.session.query(LedgerEvent)
    if event_category:
        query = query.filter(LedgerEvent.event_category == event_category)
    if shift_id is not None:
        query = query.filter(LedgerEvent.shift_id == shift_id)
    if order_id is not None:
        query = query.filter(LedgerEvent.order_id == order_id)
    if cursor is not None:
        query = query.filter(LedgerEvent.id < cursor)

    rows = query.order_by(LedgerEvent.id.desc()).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return rows, next_cursor
