import logging

import pytest
import requests

from conftest import seed_restaurant
from foodmarket.adapters.payment_readiness import HttpReadinessBackend
from foodmarket.models.vendor_payment import OnboardingStatus
from foodmarket.services.payment_gate import (
    DatabaseReadinessBackend,
    PaymentReadinessGate,
    Readiness,
)


class _BrokenBackend:
    def is_ready(self, restaurant_id):
        raise requests.ConnectionError("readiness service down")


class _FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        return self._body


class _FakeHttp:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        return self.response


@pytest.mark.parametrize(
    "status,expected",
    [
        (OnboardingStatus.COMPLETE, Readiness.READY),
        (OnboardingStatus.PENDING, Readiness.NOT_READY),
        (OnboardingStatus.RESTRICTED, Readiness.NOT_READY),
        (None, Readiness.NOT_READY),
    ],
)
def test_database_backend_statuses(db, status, expected):
    restaurant_id, _ = seed_restaurant(status=status)
    gate = PaymentReadinessGate(DatabaseReadinessBackend(db))
    assert gate.check(restaurant_id) is expected
    assert gate.is_ready(restaurant_id) is (expected is Readiness.READY)


def test_check_failure_fails_open_and_is_logged(caplog):
    gate = PaymentReadinessGate(_BrokenBackend())
    with caplog.at_level(logging.INFO, logger="foodmarket"):
        assert gate.check("r-1") is Readiness.CHECK_FAILED
        assert gate.is_ready("r-1") is True
    messages = [r.getMessage() for r in caplog.records]
    assert any("event=payment_readiness_check_failed" in m for m in messages)
    assert any("event=payment_readiness_fail_open restaurant_id=r-1" in m for m in messages)


def test_http_backend_reads_flag():
    http = _FakeHttp(_FakeResponse(200, {"paymentReady": True}))
    backend = HttpReadinessBackend("http://readiness.local/", timeout=1.5, session=http)
    assert backend.is_ready("r-9") is True
    assert http.calls == [("http://readiness.local/restaurants/r-9/payment-ready", 1.5)]

    http.response = _FakeResponse(200, {"ready": False})
    assert backend.is_ready("r-9") is False


def test_http_backend_errors_become_check_failed():
    for resp in (_FakeResponse(503, {}), _FakeResponse(200, {"unexpected": 1})):
        backend = HttpReadinessBackend("http://readiness.local", session=_FakeHttp(resp))
        assert PaymentReadinessGate(backend).check("r-9") is Readiness.CHECK_FAILED
