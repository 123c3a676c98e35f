# Overview: Server-held draft carts, one per operator and table.

from __future__ import annotations

import json

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import OrderDraft

TAKEAWAY_KEY = "takeaway"
MAX_DRAFT_BYTES = 64 * 1024


def _normalize_key(table_key) -> str:
    key = str(table_key or "").strip().lower()
    if not key:
        raise ValidationError("table_key is required", field="table_key")
    if len(key) > 64:
        raise ValidationError("table_key exceeds max length 64", field="table_key")
    return key


def get_draft(operator_id: str, table_key) -> OrderDraft:
    draft = db.session.query(OrderDraft).filter_by(
        operator_id=operator_id,
        table_key=_normalize_key(table_key),
    ).first()
    if not draft:
        raise NotFoundError("Draft not found")
    return draft


def list_drafts(operator_id: str) -> list[OrderDraft]:
    return (
        db.session.query(OrderDraft)
        .filter_by(operator_id=operator_id)
        .order_by(OrderDraft.updated_at.desc(), OrderDraft.id.desc())
        .all()
    )


def save_draft(operator_id: str, table_key, payload) -> OrderDraft:
    """Create or overwrite the draft for (operator, table)."""
    if not isinstance(payload, dict):
        raise ValidationError("Draft payload must be an object", field="payload")
    if len(json.dumps(payload)) > MAX_DRAFT_BYTES:
        raise ValidationError("Draft payload is too large", field="payload")

    key = _normalize_key(table_key)
    draft = db.session.query(OrderDraft).filter_by(operator_id=operator_id, table_key=key).first()
    if draft:
        draft.payload = payload
    else:
        draft = OrderDraft(operator_id=operator_id, table_key=key, payload=payload)
        db.session.add(draft)
    db.session.commit()
    return draft


def delete_draft(operator_id: str, table_key) -> None:
    draft = get_draft(operator_id, table_key)
    db.session.delete(draft)
    db.session.commit()
