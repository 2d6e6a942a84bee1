# Overview: HTTP client for the invoice API, including the PDF status polling contract.

"""
Invoice API client

Polling contract: after creating an invoice (or asking for its PDF), poll
GET /invoices/<id> every 2 seconds until the status is "ready", and give up
after 30 seconds. Giving up is not an error: the caller gets a PollResult
with status "pending" and should show the invoice as still being prepared.
Errors while polling are logged and polling continues. Polling never cancels
a render on the server.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 30.0


class InvoiceClientError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, message: str, status_code: int, payload: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def retryable(self) -> bool:
        return bool(self.payload.get("retryable")) or self.status_code >= 500


@dataclass
class PollResult:
    status: str  # "ready" or "pending"
    invoice: Optional[Dict[str, Any]]
    pdf_url: Optional[str]
    timed_out: bool
    last_status: Optional[str] = None  # queued / generating as last seen
    polls: int = 0

    @property
    def ready(self) -> bool:
        return self.status == "ready"


class InvoiceClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)
        self.token = token
        self._sleep = sleep
        self._clock = clock

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self.client.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            raise InvoiceClientError(
                payload.get("error") or f"HTTP {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )
        return response

    def login(self, username: str, password: str, org_id: Optional[int] = None) -> Dict:
        body = {"username": username, "password": password}
        if org_id is not None:
            body["org_id"] = org_id
        data = self._request("POST", "/api/auth/login", json=body).json()
        self.token = data["token"]
        return data

    def create_invoice_from_sale(
        self,
        org_id: int,
        sale_id: int,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        customer_gstin: Optional[str] = None,
        force_sync_pdf: bool = False,
    ) -> Dict:
        body: Dict[str, Any] = {"force_sync_pdf": force_sync_pdf}
        for key, value in (
            ("customer_name", customer_name),
            ("customer_phone", customer_phone),
            ("customer_gstin", customer_gstin),
        ):
            if value is not None:
                body[key] = value
        path = f"/api/organizations/{org_id}/sales/{sale_id}/invoice"
        return self._request("POST", path, json=body).json()

    def get_invoice(self, org_id: int, invoice_id: int) -> Dict:
        return self._request("GET", f"/api/organizations/{org_id}/invoices/{invoice_id}").json()

    def list_invoices(self, org_id: int, **params) -> Dict:
        params = {k: v for k, v in params.items() if v is not None}
        return self._request("GET", f"/api/organizations/{org_id}/invoices", params=params).json()

    def generate_pdf(self, org_id: int, invoice_id: int, force: bool = False) -> Dict:
        params = {"force": "true"} if force else None
        path = f"/api/organizations/{org_id}/invoices/{invoice_id}/pdf"
        return self._request("POST", path, params=params).json()

    def download_pdf(self, org_id: int, invoice_id: int) -> Optional[bytes]:
        """PDF bytes, or None while the server answers 202 (still rendering)."""
        response = self._request("GET", f"/api/organizations/{org_id}/invoices/{invoice_id}/pdf")
        if response.status_code == 202:
            return None
        return response.content

    def wait_for_pdf(
        self,
        org_id: int,
        invoice_id: int,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> PollResult:
        """Poll until the PDF is ready or timeout elapses; never raises for a timeout."""
        deadline = self._clock() + timeout
        last: Optional[Dict] = None
        polls = 0

        while True:
            polls += 1
            try:
                last = self.get_invoice(org_id, invoice_id)
            except (httpx.HTTPError, InvoiceClientError) as exc:
                logger.warning("Polling invoice %s failed, will retry: %s", invoice_id, exc)
            else:
                if last.get("status") == "ready" and last.get("pdf_url"):
                    return PollResult(
                        status="ready",
                        invoice=last.get("invoice"),
                        pdf_url=last["pdf_url"],
                        timed_out=False,
                        last_status="ready",
                        polls=polls,
                    )

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(interval, remaining))

        logger.info("Invoice %s PDF still pending after %.0fs", invoice_id, timeout)
        return PollResult(
            status="pending",
            invoice=last.get("invoice") if last else None,
            pdf_url=None,
            timed_out=True,
            last_status=last.get("status") if last else None,
            polls=polls,
        )
