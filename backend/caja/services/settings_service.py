from __future__ import annotations

import json
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Setting
from .ledger_service import append_ledger_event


CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
CLOCK_RE = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
PRINTER_TYPES = ("KITCHEN", "BAR", "RECEIPT")


# key -> (type, default, validation)
SETTINGS_CATALOG: dict[str, dict[str, Any]] = {
    "tax_rate": {"type": "decimal", "default": 8, "min": 0, "max": 100},
    "tax_enabled": {"type": "bool", "default": True},
    "tip_rate": {"type": "decimal", "default": 10, "min": 0, "max": 100},
    "tip_enabled": {"type": "bool", "default": True},
    "currency": {"type": "string", "default": "COP", "regex": CURRENCY_RE},
    "payment_methods": {
        "type": "payment_methods",
        "default": [
            {"name": "CASH", "enabled": True, "requires_reference": False},
            {"name": "CARD", "enabled": True, "requires_reference": True},
            {"name": "TRANSFER", "enabled": True, "requires_reference": True},
        ],
    },
    "printers": {"type": "printers", "default": []},
    "operating_hours": {
        "type": "operating_hours",
        "default": [
            {"day": day, "open": "11:00", "close": "22:00", "is_open": True}
            for day in WEEKDAYS
        ],
    },
}


@dataclass(frozen=True)
class TaxPolicy:
    rate: Decimal
    enabled: bool

    @property
    def effective_rate(self) -> Decimal:
        if not self.enabled:
            return Decimal(0)
        return max(self.rate, Decimal(0))


# =============================================================================
# VALUE COERCION
# =============================================================================

def _coerce_bool(key: str, v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"true", "1", "yes", "on"}:
            return True
        if s in {"false", "0", "no", "off"}:
            return False
    raise ValidationError(f"{key}: expected boolean", field=key)


def _coerce_decimal(key: str, v: Any, spec: dict) -> float:
    if isinstance(v, bool):
        raise ValidationError(f"{key}: expected number", field=key)
    if isinstance(v, (int, float)):
        value = float(v)
    elif isinstance(v, str):
        try:
            value = float(v.strip())
        except ValueError:
            raise ValidationError(f"{key}: expected number", field=key)
    else:
        raise ValidationError(f"{key}: expected number", field=key)
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError(f"{key}: expected a finite number", field=key)
    if "min" in spec and value < spec["min"]:
        raise ValidationError(f"{key}: must be >= {spec['min']}", field=key)
    if "max" in spec and value > spec["max"]:
        raise ValidationError(f"{key}: must be <= {spec['max']}", field=key)
    return int(value) if value == int(value) else value


def _require_list_of_dicts(key: str, v: Any) -> list[dict]:
    if not isinstance(v, list) or not all(isinstance(item, dict) for item in v):
        raise ValidationError(f"{key}: expected a list of objects", field=key)
    return v


def _coerce_payment_methods(key: str, v: Any) -> list[dict]:
    out = []
    seen = set()
    for item in _require_list_of_dicts(key, v):
        name = str(item.get("name") or "").strip().upper()
        if not name:
            raise ValidationError(f"{key}: every method needs a name", field=key)
        if name in seen:
            raise ValidationError(f"{key}: duplicate method {name}", field=key)
        seen.add(name)
        out.append({
            "name": name,
            "enabled": _coerce_bool(key, item.get("enabled", True)),
            "requires_reference": _coerce_bool(key, item.get("requires_reference", False)),
        })
    return out


def _coerce_printers(key: str, v: Any) -> list[dict]:
    out = []
    for item in _require_list_of_dicts(key, v):
        name = str(item.get("name") or "").strip()
        if not name:
            raise ValidationError(f"{key}: every printer needs a name", field=key)
        ptype = str(item.get("type") or "KITCHEN").strip().upper()
        if ptype not in PRINTER_TYPES:
            raise ValidationError(f"{key}: printer type must be one of {list(PRINTER_TYPES)}", field=key)
        port = item.get("port", 9100)
        if isinstance(port, bool) or not isinstance(port, int) or not (0 < port < 65536):
            raise ValidationError(f"{key}: port must be an integer between 1 and 65535", field=key)
        out.append({
            "name": name,
            "type": ptype,
            "ip": str(item.get("ip") or "").strip(),
            "port": port,
            "enabled": _coerce_bool(key, item.get("enabled", True)),
        })
    return out


def _coerce_operating_hours(key: str, v: Any) -> list[dict]:
    out = []
    for item in _require_list_of_dicts(key, v):
        day = str(item.get("day") or "").strip().lower()
        if day not in WEEKDAYS:
            raise ValidationError(f"{key}: unknown day {item.get('day')!r}", field=key)
        opens = str(item.get("open") or "")
        closes = str(item.get("close") or "")
        if not CLOCK_RE.match(opens) or not CLOCK_RE.match(closes):
            raise ValidationError(f"{key}: open/close must be HH:MM", field=key)
        out.append({
            "day": day,
            "open": opens,
            "close": closes,
            "is_open": _coerce_bool(key, item.get("is_open", True)),
        })
    return out


def _normalize_value(key: str, value: Any) -> Any:
    spec = SETTINGS_CATALOG.get(key)
    if spec is None:
        raise NotFoundError(f"Unknown setting: {key}")
    t = spec["type"]
    if t == "bool":
        return _coerce_bool(key, value)
    if t == "decimal":
        return _coerce_decimal(key, value, spec)
    if t == "string":
        if not isinstance(value, str):
            raise ValidationError(f"{key}: expected string", field=key)
        value = value.strip().upper()
        if "regex" in spec and not spec["regex"].match(value):
            raise ValidationError(f"{key}: format is invalid", field=key)
        return value
    if t == "payment_methods":
        return _coerce_payment_methods(key, value)
    if t == "printers":
        return _coerce_printers(key, value)
    if t == "operating_hours":
        return _coerce_operating_hours(key, value)
    raise ValidationError(f"{key}: unsupported type {t}", field=key)


# =============================================================================
# READ / WRITE
# =============================================================================

def _decode(row: Setting | None, key: str) -> Any:
    if row is None or row.value is None:
        return SETTINGS_CATALOG[key]["default"]
    return json.loads(row.value)


def get_setting(key: str) -> Any:
    """Stored value for key, or the catalog default when never set."""
    if key not in SETTINGS_CATALOG:
        raise NotFoundError(f"Unknown setting: {key}")
    row = db.session.query(Setting).filter_by(key=key).first()
    return _decode(row, key)


def get_all_settings() -> dict[str, Any]:
    rows = {r.key: r for r in db.session.query(Setting).all()}
    return {key: _decode(rows.get(key), key) for key in SETTINGS_CATALOG}


def set_settings(updates: dict[str, Any], *, updated_by: str | None = None) -> dict[str, Any]:
    """
    Validate and store several settings at once.

    All keys are validated before anything is written, so a bad value leaves
    every setting unchanged.
    """
    if not isinstance(updates, dict) or not updates:
        raise ValidationError("No settings provided")

    normalized = {key: _normalize_value(key, value) for key, value in updates.items()}

    for key, value in normalized.items():
        row = db.session.query(Setting).filter_by(key=key).first()
        encoded = json.dumps(value)
        if row:
            row.value = encoded
            row.updated_by = updated_by
        else:
            row = Setting(key=key, value=encoded, updated_by=updated_by)
            db.session.add(row)
        db.session.flush()
        append_ledger_event(
            event_type="SETTING_UPDATED",
            event_category="settings",
            entity_type="setting",
            entity_id=row.id,
            actor_id=updated_by,
            note=key,
            payload={"key": key, "value": value},
        )

    db.session.commit()
    return get_all_settings()


def set_setting(key: str, value: Any, *, updated_by: str | None = None) -> Any:
    return set_settings({key: value}, updated_by=updated_by)[key]


def ensure_defaults_seeded() -> int:
    """Insert catalog defaults for keys with no stored row. Returns rows added."""
    existing = {r.key for r in db.session.query(Setting.key).all()}
    added = 0
    for key, spec in SETTINGS_CATALOG.items():
        if key in existing:
            continue
        db.session.add(Setting(key=key, value=json.dumps(spec["default"])))
        added += 1
    if added:
        db.session.commit()
    return added


def get_tax_policy() -> TaxPolicy:
    """Tax rate (percent) and switch read by the settlement path."""
    rate = Decimal(str(get_setting("tax_rate")))
    enabled = bool(get_setting("tax_enabled"))
    return TaxPolicy(rate=rate, enabled=enabled)
