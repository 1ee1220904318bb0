import enum
from typing import Optional

from pydantic import BaseModel


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self):
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
)


class PaymentMethod(str, enum.Enum):
    MPESA = "mpesa"
    PAYSTACK = "paystack"
    OTHER = "other"

    @classmethod
    def infer(cls, checkout_id: Optional[str] = None):
        """Only M-Pesa payments hand back a checkout request id."""
        return cls.MPESA if checkout_id else cls.PAYSTACK


class PaymentRecord(BaseModel):
    id: Optional[str] = None
    status: str = PaymentStatus.PENDING.value
    amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    payment_number: Optional[str] = None
    invoice_id: Optional[str] = None


class MpesaStatusResult(BaseModel):
    result_code: Optional[int] = None
    result_desc: Optional[str] = None


class CallbackEvent(BaseModel):
    code: Optional[int] = None
    message: Optional[str] = None


class PaymentUpdate(BaseModel):
    payment_id: str
    status: Optional[str] = None
    message: Optional[str] = None


class SessionView(BaseModel):
    payment_id: str
    method: PaymentMethod
    checkout_id: Optional[str] = None
    status: PaymentStatus
    terminal: bool
    error_message: Optional[str] = None
    channel_connected: bool
    channel_error: Optional[str] = None
    fallback_armed: bool
    fallback_fired: bool
    stopped: bool
    payment: Optional[PaymentRecord] = None
