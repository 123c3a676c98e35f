# Overview: HTTP client for the local print server (kitchen tickets, corrections, cash drawer).

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Iterable

import httpx
from flask import current_app

from ..time_utils import local_clock


"""
Print server contract

- POST /print-kitchen, /print-correction and /open-drawer take JSON and answer
  {"success": bool, "message"?: str, "error"?: str}.
- Printing is best effort. Network errors, timeouts, non-2xx answers and
  success=false become a failed PrintResult carrying a locally rendered ticket
  (fallback_text). Nothing here raises into the caller.
- An empty PRINT_SERVER_URL disables printing; every call is then "skipped".
"""

CORRECTION_ADD = "AGREGAR"
CORRECTION_REMOVE = "ELIMINAR"
CORRECTION_QUANTITY = "CANTIDAD"
CORRECTION_MODIFY = "MODIFICACION"
CORRECTION_TYPES = (CORRECTION_ADD, CORRECTION_REMOVE, CORRECTION_QUANTITY, CORRECTION_MODIFY)

_CORRECTION_HEADINGS = {
    CORRECTION_ADD: ("*** ITEMS AGREGADOS ***", "+ "),
    CORRECTION_REMOVE: ("*** ITEMS ELIMINADOS ***", "- "),
    CORRECTION_QUANTITY: ("*** CAMBIO DE CANTIDAD ***", "~ "),
    CORRECTION_MODIFY: ("*** MODIFICACION ***", ""),
}

TICKET_RULE = "-" * 32


@dataclass
class PrintResult:
    success: bool
    skipped: bool = False
    message: str | None = None
    fallback_text: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    def as_warning(self) -> str | None:
        """Message to surface next to a successful business response."""
        if self.success or self.skipped:
            return None
        return self.message or "Print server unavailable"


# =============================================================================
# PAYLOADS
# =============================================================================

def _order_header(order) -> dict:
    area = order.table.area if order.table is not None else None
    return {
        "mesa": order.display_name,
        "mesero": order.waiter_name or "N/A",
        "area": area or "N/A",
    }


def build_kitchen_payload(order, items: Iterable | None = None) -> dict:
    """Comanda body for POST /print-kitchen."""
    tz_name = current_app.config.get("LOCAL_TIMEZONE", "America/Bogota")
    lines = list(items) if items is not None else list(order.items)
    payload = _order_header(order)
    payload.update({
        "items": [
            {"nombre": i.product_name, "cantidad": i.quantity, "notas": i.notes or ""}
            for i in lines
        ],
        "total": order.subtotal,
        "hora": local_clock(tz_name),
    })
    return payload


def build_correction_payload(order, tipo: str, items: list[dict]) -> dict:
    """
    Body for POST /print-correction.

    items are {nombre, cantidad, cantidadAnterior?, notas?} dicts.
    """
    if tipo not in CORRECTION_TYPES:
        tipo = CORRECTION_MODIFY
    tz_name = current_app.config.get("LOCAL_TIMEZONE", "America/Bogota")
    payload = {"tipo": tipo}
    payload.update(_order_header(order))
    payload["items"] = items
    payload["hora"] = local_clock(tz_name)
    return payload


def render_ticket_text(kind: str, payload: dict) -> str:
    """
    Plain-text rendering of a ticket, same layout as the thermal printer.
    Returned when the print server cannot be reached so the caller can show
    or hand-copy it.
    """
    out: list[str] = []
    tipo = payload.get("tipo")
    if kind == "correction":
        heading, prefix = _CORRECTION_HEADINGS.get(tipo, _CORRECTION_HEADINGS[CORRECTION_MODIFY])
        out += ["CORRECCION DE COMANDA", "=" * 32, heading, TICKET_RULE]
    elif kind == "drawer":
        return "ABRIR CAJA MONEDERA"
    else:
        prefix = ""
        out += ["--- COMANDA ---", TICKET_RULE]

    out.append(f"Mesero: {payload.get('mesero') or 'N/A'}")
    out.append(f"Mesa: {payload.get('mesa') or 'N/A'}")
    out.append(f"Area: {payload.get('area') or 'N/A'}")
    out.append(f"Hora: {payload.get('hora') or ''}")
    out.append(TICKET_RULE)

    items = payload.get("items") or []
    for item in items:
        out.append(f"{prefix}{item.get('cantidad')}x {item.get('nombre')}")
        notas = (item.get("notas") or "").strip()
        if notas:
            out.append(f"  > {notas}")
        if item.get("cantidadAnterior") is not None:
            out.append(f"  (Antes: {item['cantidadAnterior']} -> Ahora: {item.get('cantidad')})")

    out.append(TICKET_RULE)
    if kind == "correction":
        out.append("VERIFICAR CON MESERO")
    else:
        out.append(f"{len(items)} items")
    return "\n".join(out)


# =============================================================================
# TRANSPORT
# =============================================================================

def _client() -> httpx.Client | None:
    base_url = (current_app.config.get("PRINT_SERVER_URL") or "").strip()
    if not base_url:
        return None
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        timeout=current_app.config.get("PRINT_SERVER_TIMEOUT", 5.0),
        transport=current_app.config.get("PRINT_TRANSPORT"),
    )


def _post(path: str, payload: dict, *, kind: str) -> PrintResult:
    client = _client()
    if client is None:
        return PrintResult(success=False, skipped=True, message="Printing disabled")

    fallback = render_ticket_text(kind, payload)
    try:
        with client:
            r = client.post(path, json=payload)
        r.raise_for_status()
        body = r.json()
    except httpx.TimeoutException:
        current_app.logger.warning("Print server timeout on %s", path)
        return PrintResult(success=False, message="Print server timeout", fallback_text=fallback)
    except httpx.HTTPStatusError as e:
        current_app.logger.warning("Print server returned %s on %s", e.response.status_code, path)
        return PrintResult(
            success=False,
            message=f"Print server error {e.response.status_code}",
            fallback_text=fallback,
        )
    except (httpx.HTTPError, ValueError) as e:
        current_app.logger.warning("Print server unreachable on %s: %s", path, e)
        return PrintResult(success=False, message="Print server unreachable", fallback_text=fallback)

    if not isinstance(body, dict) or not body.get("success"):
        reason = body.get("message") or body.get("error") if isinstance(body, dict) else None
        current_app.logger.warning("Print server rejected %s: %s", path, reason)
        return PrintResult(success=False, message=reason or "Print failed", fallback_text=fallback)

    return PrintResult(success=True, message=body.get("message"))


def print_kitchen_ticket(order, items: Iterable | None = None) -> PrintResult:
    return _post("/print-kitchen", build_kitchen_payload(order, items), kind="kitchen")


def print_correction(order, tipo: str, items: list[dict]) -> PrintResult:
    return _post("/print-correction", build_correction_payload(order, tipo, items), kind="correction")


def open_cash_drawer() -> PrintResult:
    return _post("/open-drawer", {}, kind="drawer")


def check_print_server() -> dict:
    """Reachability probe used by the health endpoint."""
    client = _client()
    if client is None:
        return {"status": "disabled"}
    try:
        with client:
            r = client.get("/health")
        r.raise_for_status()
    except httpx.HTTPError as e:
        return {"status": "unreachable", "error": str(e)}
    return {"status": "ok"}
