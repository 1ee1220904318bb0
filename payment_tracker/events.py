"""
Normalization of raw channel payloads and API bodies.

Everything that arrives from the transport or the payments API passes through
here before the tracker sees it. None of these functions raise on malformed
input: missing or garbled fields come back as ``None``.
"""
import logging
from typing import Optional

from payment_tracker.models import CallbackEvent, MpesaStatusResult, PaymentRecord, PaymentUpdate

logger = logging.getLogger(__name__)


def normalize_result_code(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return None
    return None


def _first_present(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def unwrap_envelope(body):
    """Strip the API's ``{"data": ...}`` envelope when present."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body


def parse_callback(payload) -> CallbackEvent:
    if not isinstance(payload, dict):
        logger.warning(f"Malformed M-Pesa callback payload: {payload!r}")
        return CallbackEvent()

    code = normalize_result_code(_first_present(payload.get("CODE"), payload.get("code")))
    if code is None:
        logger.warning(f"M-Pesa callback missing result code. Payload: {payload}")

    return CallbackEvent(code=code, message=_text(payload.get("message")))


def parse_payment_update(payload) -> Optional[PaymentUpdate]:
    if not isinstance(payload, dict) or payload.get("paymentId") is None:
        return None

    status = payload.get("status")
    return PaymentUpdate(
        payment_id=str(payload["paymentId"]),
        status=status if isinstance(status, str) else None,
        message=_text(payload.get("message")),
    )


def parse_mpesa_status(body) -> MpesaStatusResult:
    data = unwrap_envelope(body)
    if not isinstance(data, dict):
        return MpesaStatusResult()

    raw = data.get("raw") if isinstance(data.get("raw"), dict) else {}
    code = _first_present(data.get("resultCode"), raw.get("ResultCode"), data.get("CODE"))
    desc = _first_present(data.get("resultDesc"), raw.get("ResultDesc"), data.get("message"))

    return MpesaStatusResult(result_code=normalize_result_code(code), result_desc=_text(desc))


def parse_payment_record(body) -> PaymentRecord:
    root = unwrap_envelope(body)
    if isinstance(root, dict) and isinstance(root.get("payment"), dict):
        root = root["payment"]
    if not isinstance(root, dict):
        return PaymentRecord()

    invoice = _first_present(root.get("invoice"), root.get("invoiceId"))
    if isinstance(invoice, dict):
        invoice = _first_present(invoice.get("_id"), invoice.get("id"))

    amount = root.get("amount")
    try:
        amount = float(amount) if amount is not None else None
    except (TypeError, ValueError):
        amount = None

    return PaymentRecord(
        id=_text(_first_present(root.get("_id"), root.get("id"))),
        status=_text(root.get("status")) or "pending",
        amount=amount,
        currency=_text(root.get("currency")),
        payment_method=_text(root.get("paymentMethod")),
        payment_number=_text(root.get("paymentNumber")),
        invoice_id=_text(invoice),
    )
