import logging

import requests

from payment_tracker import config
from payment_tracker.events import parse_mpesa_status, parse_payment_record, unwrap_envelope
from payment_tracker.exceptions import PaymentQueryError

logger = logging.getLogger(__name__)


class PaymentQueryClient:
    """Blocking client for the payments API; the tracker calls it from a worker thread."""

    def __init__(self, base_url, api_prefix="/api", access_token=None, refresh_token=None,
                 timeout=30, session=None):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls):
        return cls(
            base_url=config.API_BASE_URL,
            api_prefix=config.API_PREFIX,
            access_token=config.API_ACCESS_TOKEN,
            refresh_token=config.API_REFRESH_TOKEN,
            timeout=config.REQUEST_TIMEOUT,
        )

    def get_payment(self, payment_id: str):
        return parse_payment_record(self._get(f"/payments/{payment_id}"))

    def query_mpesa_status(self, checkout_request_id: str):
        return parse_mpesa_status(self._get(f"/payments/mpesa-status/{checkout_request_id}"))

    def _url(self, path):
        return f"{self.base_url}{self.api_prefix}{path}"

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _get(self, path):
        url = self._url(path)
        try:
            resp = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            if resp.status_code == 401 and self._refresh_access_token():
                resp = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"Payments API returned {status_code} for {path}")
            raise PaymentQueryError(f"Request to {path} failed", status_code=status_code) from e
        except ValueError as e:
            # requests' JSONDecodeError is also a RequestException
            logger.error(f"Payments API sent invalid JSON for {path}")
            raise PaymentQueryError(f"Invalid JSON from {path}") from e
        except requests.RequestException as e:
            logger.error(f"Payments API unreachable for {path}: {e}")
            raise PaymentQueryError(f"Request to {path} failed") from e

    def _refresh_access_token(self):
        if not self.refresh_token:
            return False

        resp = self.session.post(
            self._url("/auth/refresh-token"),
            json={"refreshToken": self.refresh_token},
            timeout=self.timeout,
        )
        if not resp.ok:
            logger.warning(f"Access token refresh rejected with {resp.status_code}")
            return False

        data = unwrap_envelope(resp.json())
        token = data.get("accessToken") if isinstance(data, dict) else None
        if not token:
            return False

        self.access_token = token
        logger.info("Access token refreshed")
        return True
