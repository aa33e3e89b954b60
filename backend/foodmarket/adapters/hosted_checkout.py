import time
from typing import Dict, List, Optional
from uuid import uuid4

import requests

from foodmarket.config import settings
from foodmarket.services.errors import UpstreamUnavailable


class MockHostedCheckoutAdapter:
    """
    In-process stand-in for the hosted payment collaborator.
    create_session returns {session_id, checkout_url}; `fail_with` makes every call
    raise UpstreamUnavailable (used to exercise the partial-failure path).
    """

    def __init__(self, delay_ms: int = 0, fail_with: Optional[str] = None):
        # Convert delay from milliseconds to seconds for time.sleep
        self.delay_seconds = delay_ms / 1000.0
        self.fail_with = fail_with
        self.sessions: List[Dict] = []

    def create_session(
        self, order_id: str, amount_cents: int, success_url: str, cancel_url: str
    ) -> Dict:
        # Simulate network latency / gateway processing
        time.sleep(self.delay_seconds)
        if self.fail_with:
            raise UpstreamUnavailable(self.fail_with)
        session_id = f"cs_mock_{uuid4().hex[:16]}"
        sess = {
            "session_id": session_id,
            "checkout_url": f"https://checkout.mock/pay/{session_id}",
            "order_id": order_id,
            "amount_cents": amount_cents,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        self.sessions.append(sess)
        return sess

    def health_check(self) -> bool:
        return self.fail_with is None


class HttpHostedCheckoutAdapter:
    """
    POST {base_url}/checkout/sessions
      {orderId, amountCents, successUrl, cancelUrl} -> {sessionId, url}
    A single bounded call: timeouts and non-2xx answers become UpstreamUnavailable.
    """

    def __init__(self, base_url: str, timeout: float = None, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.HOSTED_CHECKOUT_TIMEOUT_SECONDS
        self.http = session or requests.Session()

    def create_session(
        self, order_id: str, amount_cents: int, success_url: str, cancel_url: str
    ) -> Dict:
        payload = {
            "orderId": order_id,
            "amountCents": amount_cents,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
        }
        try:
            r = self.http.post(
                f"{self.base_url}/checkout/sessions", json=payload, timeout=self.timeout
            )
        except requests.Timeout:
            raise UpstreamUnavailable("Hosted checkout timed out")
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Hosted checkout unreachable: {e}")
        if r.status_code >= 400:
            raise UpstreamUnavailable(
                f"Hosted checkout rejected session ({r.status_code}): {r.text[:200]}"
            )
        body = r.json()
        url = body.get("url") or body.get("checkoutUrl")
        if not url:
            raise UpstreamUnavailable("Hosted checkout returned no url")
        return {"session_id": body.get("sessionId") or body.get("id"), "checkout_url": url}

    def health_check(self) -> bool:
        try:
            r = self.http.get(f"{self.base_url}/health", timeout=self.timeout)
            return r.status_code < 500
        except requests.RequestException:
            return False


def default_hosted_checkout():
    if settings.HOSTED_CHECKOUT_URL:
        return HttpHostedCheckoutAdapter(settings.HOSTED_CHECKOUT_URL)
    return MockHostedCheckoutAdapter(delay_ms=settings.PAYMENT_MOCK_DELAY_MS)
