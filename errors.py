# errors.py
"""
Error taxonomy for the checkout engine.

`error_from_response` is the only place that looks at raw backend error
bodies. Everything else works with the typed exceptions below and turns
them into operator-facing text through `describe_error`.
"""
import re
import logging
from typing import Iterable, List, Optional

from models import StockShortage

logger = logging.getLogger("pos_system.errors")

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
STOCK_SHORTAGE_MESSAGE = "Cannot create the order because stock is insufficient."

# Backend grammar (not a stable contract):
# "Số sản phẩm yêu cầu vượt quá số lượng trong kho. Số lượng yêu cầu: 5,
#  Số lượng trong kho còn: 2 (ProductUnitId: 17)"
_SHORTAGE_RE = re.compile(
    r"Số lượng yêu cầu:\s*(\d+),\s*Số lượng trong kho còn:\s*(\d+)\s*\(ProductUnitId:\s*(\d+)\)"
)
_SHORTAGE_MARKERS = (
    "vượt quá số lượng trong kho",
    "không đủ",
    "hết hàng",
    "insufficient",
    "out of stock",
)


class PosError(Exception):
    """Base class for engine errors."""


class ApiError(PosError):
    def __init__(self, status: Optional[int], message: str, payload=None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload


class AuthExpiredError(ApiError):
    pass


class StockShortageError(ApiError):
    def __init__(self, status, message, shortages: List[StockShortage], payload=None):
        super().__init__(status, message, payload)
        self.shortages = shortages


class CheckoutValidationError(PosError):
    pass


class PaymentIntentError(PosError):
    pass


def parse_stock_shortage(message: str) -> Optional[StockShortage]:
    """Best-effort extraction of shortage quantities from message text."""
    match = _SHORTAGE_RE.search(message or "")
    if not match:
        return None
    required, available, unit_id = (int(g) for g in match.groups())
    return StockShortage(unit_id=unit_id, required_qty=required, available_qty=available)


def shortage_from_payload(payload) -> Optional[StockShortage]:
    """Read a structured {code, requiredQty, availableQty, unitId} body."""
    if not isinstance(payload, dict):
        return None
    body = payload.get('error') if isinstance(payload.get('error'), dict) else payload
    if 'requiredQty' not in body and 'availableQty' not in body:
        return None
    try:
        return StockShortage(
            unit_id=int(body['unitId']) if body.get('unitId') is not None else None,
            required_qty=int(body['requiredQty']) if body.get('requiredQty') is not None else None,
            available_qty=int(body['availableQty']) if body.get('availableQty') is not None else None,
        )
    except (TypeError, ValueError):
        return None


def _payload_message(payload, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ('message', 'error', 'detail'):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return fallback


def error_from_response(status: int, payload=None) -> ApiError:
    """Translate an HTTP error response into a typed exception."""
    message = _payload_message(payload, f"HTTP {status}")
    if status in (401, 403):
        return AuthExpiredError(status, message, payload)

    shortage = shortage_from_payload(payload)
    if shortage is None and status in (400, 409, 422):
        shortage = parse_stock_shortage(message)
    if shortage is not None:
        return StockShortageError(status, message, [shortage], payload)
    if status in (400, 409, 422) and any(m in message.lower() for m in _SHORTAGE_MARKERS):
        return StockShortageError(status, message, [], payload)
    return ApiError(status, message, payload)


def describe_shortage(shortage: StockShortage, lines: Iterable = ()) -> str:
    line = next((l for l in lines if getattr(l, 'catalog_unit_id', None) == shortage.unit_id), None)
    name = line.name if line else f"Unit #{shortage.unit_id}"
    unit = line.unit_label if line else "units"
    return (
        f'"{name}" has only {shortage.available_qty} {unit} in stock. '
        f"Requested: {shortage.required_qty}. Short by: {shortage.shortfall}."
    )


def describe_error(exc: BaseException, lines: Iterable = ()) -> str:
    """Operator-facing text for any failure caught at an operation boundary."""
    lines = list(lines)
    if isinstance(exc, AuthExpiredError):
        return SESSION_EXPIRED_MESSAGE
    if isinstance(exc, StockShortageError):
        if exc.shortages:
            details = "\n".join(describe_shortage(s, lines) for s in exc.shortages)
        else:
            details = exc.message
        return f"{STOCK_SHORTAGE_MESSAGE}\n\n{details}"
    if isinstance(exc, PosError):
        return str(exc)
    logger.debug(f"Unclassified error: {exc!r}")
    return f"Connection error: {exc}"
