"""
Mapping of gateway results onto payment statuses.

Both the realtime M-Pesa callback and the fallback status query resolve
through ``map_result_code`` so a given code means the same thing whichever
source reported it.
"""
from typing import NamedTuple, Optional

from payment_tracker.models import PaymentStatus

MPESA_KEEP_WAITING = 9999

FALLBACK_FAILURE_MESSAGE = "Could not verify payment status. You can retry the payment."
CARD_FAILURE_MESSAGE = "Card payment failed"

RESULT_CODES = {
    0: (PaymentStatus.COMPLETED, None),
    1: (PaymentStatus.FAILED, "Insufficient balance"),
    1032: (PaymentStatus.CANCELLED, "Cancelled by user"),
    1037: (PaymentStatus.FAILED, "Timeout reaching phone"),
    2001: (PaymentStatus.FAILED, "Wrong PIN entered"),
    1001: (PaymentStatus.FAILED, "Unable to complete transaction"),
    1019: (PaymentStatus.FAILED, "Transaction expired"),
    1025: (PaymentStatus.FAILED, "Invalid phone number"),
    1026: (PaymentStatus.FAILED, "System error"),
    1036: (PaymentStatus.FAILED, "Internal error"),
    1050: (PaymentStatus.FAILED, "Too many attempts"),
    MPESA_KEEP_WAITING: (PaymentStatus.PROCESSING, None),
}


class Outcome(NamedTuple):
    status: PaymentStatus
    message: Optional[str] = None


def map_result_code(code: Optional[int], message: Optional[str] = None) -> Outcome:
    """
    Resolve an M-Pesa result code.

    Total over every integer and ``None``: unknown or missing codes are
    failures carrying the gateway's message, or a generic one naming the code.
    """
    known = RESULT_CODES.get(code) if code is not None else None
    if known is not None:
        return Outcome(*known)

    label = "unknown" if code is None else code
    return Outcome(PaymentStatus.FAILED, message or f"Transaction failed with code {label}")


def map_paystack_status(status: Optional[str], message: Optional[str] = None) -> Outcome:
    if status in ("completed", "PAID"):
        return Outcome(PaymentStatus.COMPLETED)
    if status in ("failed", "FAILED"):
        return Outcome(PaymentStatus.FAILED, message or CARD_FAILURE_MESSAGE)
    return Outcome(PaymentStatus.PROCESSING)


def map_record_status(status: Optional[str], message: Optional[str] = None) -> Optional[Outcome]:
    """Case-insensitive match against PaymentStatus; ``None`` for unknown strings."""
    if not isinstance(status, str):
        return None
    try:
        resolved = PaymentStatus(status.strip().lower())
    except ValueError:
        return None

    if resolved in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
        return Outcome(resolved, message)
    return Outcome(resolved)
