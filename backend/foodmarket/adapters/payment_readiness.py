import requests

from foodmarket.config import settings


class HttpReadinessBackend:
    """
    GET {base_url}/restaurants/{restaurant_id}/payment-ready -> {"paymentReady": bool}
    (``ready`` is accepted as well). Raises on transport errors, non-2xx
    answers and malformed bodies; the gate turns those into CHECK_FAILED.
    """

    def __init__(self, base_url: str, timeout: float = None, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.PAYMENT_READINESS_TIMEOUT_SECONDS
        self.http = session or requests.Session()

    def is_ready(self, restaurant_id: str) -> bool:
        r = self.http.get(
            f"{self.base_url}/restaurants/{restaurant_id}/payment-ready",
            timeout=self.timeout,
        )
        r.raise_for_status()
        body = r.json()
        for k in ("paymentReady", "ready"):
            if k in body:
                return bool(body[k])
        raise ValueError(f"readiness response without a ready flag: {body!r}")

    def health_check(self) -> bool:
        try:
            r = self.http.get(f"{self.base_url}/health", timeout=self.timeout)
            return r.status_code < 500
        except requests.RequestException:
            return False
