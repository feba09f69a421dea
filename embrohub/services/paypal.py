"""
PayPal Orders v2 client.

Two merchant accounts are configured: US customers pay into the US account,
everyone else into the EU account.
"""
import time
from typing import Optional, Dict, Any, Tuple

import httpx
import structlog

from ..config import settings
from ..exceptions import ExternalServiceError


log = structlog.get_logger()

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"


class PayPalClient:
    """Client for a single PayPal REST account"""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str], mode: Optional[str] = None, label: str = ""):
        if not client_id or not client_secret:
            raise ExternalServiceError(
                f"{label or 'PayPal'} PayPal credentials not configured",
                error="paypal_not_configured",
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = LIVE_URL if (mode or settings.paypal_mode) == "live" else SANDBOX_URL
        self.label = label
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token
        try:
            with httpx.Client(timeout=30.0) as client:
                r = client.post(
                    f"{self.base_url}/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            log.error("paypal_auth_failed", account=self.label, error=str(e))
            raise ExternalServiceError("PayPal authentication failed", error=str(e))
        self._token = data["access_token"]
        self._token_expires_at = time.time() + int(data.get("expires_in", 300))
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        try:
            with httpx.Client(timeout=30.0) as client:
                r = client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
                r.raise_for_status()
                return r.json()
        except httpx.HTTPError as e:
            log.error("paypal_request_failed", account=self.label, method=method, path=path, error=str(e))
            raise ExternalServiceError("PayPal request failed", error=str(e))

    def create_order(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/v2/checkout/orders", json=body)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/checkout/orders/{order_id}")

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/v2/checkout/orders/{order_id}/capture", json={})


def _first_capture(result: Dict[str, Any]) -> Dict[str, Any]:
    units = result.get("purchase_units") or []
    if not units:
        return {}
    captures = ((units[0].get("payments") or {}).get("captures")) or []
    return captures[0] if captures else {}


def normalize_order(result: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a PayPal order into the fields the invoice flow needs."""
    capture = _first_capture(result)
    unit = (result.get("purchase_units") or [{}])[0]
    amount = capture.get("amount") or unit.get("amount") or {}
    payer = result.get("payer") or {}
    approval_url = next((l.get("href") for l in result.get("links") or [] if l.get("rel") in ("approve", "payer-action")), None)
    value = amount.get("value")
    return {
        "order_id": result.get("id"),
        "status": result.get("status"),
        "reference_id": unit.get("reference_id"),
        "capture_id": capture.get("id"),
        "amount": float(value) if value is not None else None,
        "currency": amount.get("currency_code"),
        "payer_id": payer.get("payer_id"),
        "payer_email": payer.get("email_address"),
        "approval_url": approval_url,
    }


class PayPalGateway:
    """Routes each call to the US or EU account by ISO country code."""

    def __init__(self):
        self._clients: Dict[str, PayPalClient] = {}

    def _credentials(self, account: str) -> Tuple[Optional[str], Optional[str]]:
        if account == "US":
            return settings.paypal_us_client_id, settings.paypal_us_client_secret
        return settings.paypal_eu_client_id, settings.paypal_eu_client_secret

    def client_for(self, country_code: str) -> PayPalClient:
        account = "US" if country_code == "US" else "EU"
        if account not in self._clients:
            client_id, secret = self._credentials(account)
            self._clients[account] = PayPalClient(client_id, secret, label=account)
        log.info("paypal_account_selected", account=account, country_code=country_code)
        return self._clients[account]

    def create_order(self, amount: float, currency: str, reference: str, description: str, country_code: str) -> Dict[str, Any]:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference,
                    "description": description,
                    "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                }
            ],
            "application_context": {
                "brand_name": settings.brand_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
                "return_url": settings.paypal_return_url,
                "cancel_url": settings.paypal_cancel_url,
            },
        }
        result = normalize_order(self.client_for(country_code).create_order(body))
        log.info("paypal_order_created", paypal_order_id=result["order_id"], reference=reference)
        return result

    def get_order(self, order_id: str, country_code: str) -> Dict[str, Any]:
        return normalize_order(self.client_for(country_code).get_order(order_id))

    def capture_order(self, order_id: str, country_code: str) -> Dict[str, Any]:
        result = normalize_order(self.client_for(country_code).capture_order(order_id))
        log.info("paypal_order_captured", paypal_order_id=order_id, status=result["status"])
        return result


_gateway: Optional[PayPalGateway] = None


def get_payment_gateway() -> PayPalGateway:
    global _gateway
    if _gateway is None:
        _gateway = PayPalGateway()
    return _gateway
