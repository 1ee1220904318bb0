import pytest
import requests

from payment_tracker.exceptions import PaymentQueryError
from payment_tracker.query_client import PaymentQueryClient


def make_response(mocker, status_code=200, body=None):
    resp = mocker.Mock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.json.return_value = body
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def http(mocker):
    return mocker.Mock()


@pytest.fixture
def client(http):
    return PaymentQueryClient("http://api.test/", access_token="tok", timeout=5, session=http)


def test_get_payment(client, http, mocker):
    http.get.return_value = make_response(mocker, body={"data": {"payment": {"_id": "p1", "status": "processing"}}})

    record = client.get_payment("p1")

    assert record.status == "processing"
    http.get.assert_called_once_with(
        "http://api.test/api/payments/p1",
        headers={"Content-Type": "application/json", "Authorization": "Bearer tok"},
        timeout=5,
    )


def test_query_mpesa_status(client, http, mocker):
    http.get.return_value = make_response(mocker, body={"data": {"resultCode": "1032", "resultDesc": "Cancelled"}})

    result = client.query_mpesa_status("ws_CO_123")

    assert result.result_code == 1032
    assert http.get.call_args[0][0] == "http://api.test/api/payments/mpesa-status/ws_CO_123"


def test_http_error_is_wrapped(client, http, mocker):
    http.get.return_value = make_response(mocker, status_code=500)

    with pytest.raises(PaymentQueryError) as exc_info:
        client.query_mpesa_status("ws_CO_123")

    assert exc_info.value.status_code == 500


def test_network_error_is_wrapped(client, http):
    http.get.side_effect = requests.ConnectionError("down")

    with pytest.raises(PaymentQueryError) as exc_info:
        client.get_payment("p1")

    assert exc_info.value.status_code is None


def test_invalid_json_is_wrapped(client, http, mocker):
    resp = make_response(mocker)
    resp.json.side_effect = ValueError("no json")
    http.get.return_value = resp

    with pytest.raises(PaymentQueryError):
        client.get_payment("p1")


def test_unauthorized_request_refreshes_token_once(http, mocker):
    client = PaymentQueryClient("http://api.test", access_token="old", refresh_token="refresh", session=http)
    http.get.side_effect = [
        make_response(mocker, status_code=401),
        make_response(mocker, body={"status": "completed"}),
    ]
    http.post.return_value = make_response(mocker, body={"data": {"accessToken": "new"}})

    record = client.get_payment("p1")

    assert record.status == "completed"
    assert client.access_token == "new"
    http.post.assert_called_once_with(
        "http://api.test/api/auth/refresh-token",
        json={"refreshToken": "refresh"},
        timeout=30,
    )
    assert http.get.call_args[1]["headers"]["Authorization"] == "Bearer new"


def test_unauthorized_without_refresh_token(client, http, mocker):
    http.get.return_value = make_response(mocker, status_code=401)

    with pytest.raises(PaymentQueryError) as exc_info:
        client.get_payment("p1")

    assert exc_info.value.status_code == 401
    http.post.assert_not_called()
