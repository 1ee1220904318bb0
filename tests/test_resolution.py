import pytest

from payment_tracker.models import PaymentStatus
from payment_tracker.resolution import (
    map_paystack_status,
    map_record_status,
    map_result_code,
)


@pytest.mark.parametrize("code,status,message", [
    (0, PaymentStatus.COMPLETED, None),
    (1, PaymentStatus.FAILED, "Insufficient balance"),
    (1032, PaymentStatus.CANCELLED, "Cancelled by user"),
    (1037, PaymentStatus.FAILED, "Timeout reaching phone"),
    (2001, PaymentStatus.FAILED, "Wrong PIN entered"),
    (1001, PaymentStatus.FAILED, "Unable to complete transaction"),
    (1019, PaymentStatus.FAILED, "Transaction expired"),
    (1025, PaymentStatus.FAILED, "Invalid phone number"),
    (1026, PaymentStatus.FAILED, "System error"),
    (1036, PaymentStatus.FAILED, "Internal error"),
    (1050, PaymentStatus.FAILED, "Too many attempts"),
    (9999, PaymentStatus.PROCESSING, None),
])
def test_known_result_codes(code, status, message):
    outcome = map_result_code(code, "gateway text")
    assert outcome.status is status
    assert outcome.message == message


@pytest.mark.parametrize("code", [-1, -1032, 2, 404, 10**12])
def test_unknown_result_codes_fail_with_generic_message(code):
    outcome = map_result_code(code)
    assert outcome.status is PaymentStatus.FAILED
    assert outcome.message == f"Transaction failed with code {code}"


def test_unknown_result_code_prefers_gateway_message():
    outcome = map_result_code(17, "Rule limited")
    assert outcome == (PaymentStatus.FAILED, "Rule limited")


def test_missing_result_code():
    assert map_result_code(None) == (PaymentStatus.FAILED, "Transaction failed with code unknown")


def test_keep_waiting_code_is_not_terminal():
    assert map_result_code(9999).status.is_terminal is False


@pytest.mark.parametrize("status,expected", [
    ("completed", PaymentStatus.COMPLETED),
    ("PAID", PaymentStatus.COMPLETED),
    ("failed", PaymentStatus.FAILED),
    ("FAILED", PaymentStatus.FAILED),
    ("pending", PaymentStatus.PROCESSING),
    ("abandoned", PaymentStatus.PROCESSING),
    (None, PaymentStatus.PROCESSING),
])
def test_paystack_statuses(status, expected):
    assert map_paystack_status(status).status is expected


def test_paystack_failure_message():
    assert map_paystack_status("FAILED", "Declined").message == "Declined"
    assert map_paystack_status("failed").message == "Card payment failed"


def test_record_status_is_case_insensitive():
    assert map_record_status(" Cancelled ", "User aborted") == (PaymentStatus.CANCELLED, "User aborted")
    assert map_record_status("COMPLETED", "ignored") == (PaymentStatus.COMPLETED, None)
    assert map_record_status("refunded") is None
    assert map_record_status(None) is None
    assert map_record_status(3) is None
