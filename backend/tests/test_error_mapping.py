"""
test_error_mapping.py: Engine error -> HTTP response mapping in margindesk.main.

No database, network, or running server is required: the exception handler is
awaited directly with a bare ASGI request scope.
"""

import asyncio
import json
from decimal import Decimal

import pytest
from starlette.requests import Request

from margindesk.main import error_status, pricing_error_handler
from margindesk.services.errors import (
    ConfigurationError,
    InvalidRateError,
    PricingEngineError,
    StaleStateError,
    ValidationError,
)


def _request(path: str = "/api/quotes/q-1/send") -> Request:
    return Request({"type": "http", "method": "POST", "path": path, "headers": [], "query_string": b""})


def _handle(exc: PricingEngineError):
    response = asyncio.run(pricing_error_handler(_request(), exc))
    return response.status_code, json.loads(response.body)


class TestErrorStatus:
    """Each error class maps to one HTTP status."""

    @pytest.mark.parametrize("exc,status", [
        (ValidationError("cost must be greater than zero", field="cost"), 422),
        (InvalidRateError("rate sum >= 1", field="tax_rate"), 422),
        (ConfigurationError("no tier"), 409),
        (StaleStateError("already sent"), 409),
        (PricingEngineError("generic"), 400),
    ])
    def test_status_by_class(self, exc, status):
        assert error_status(exc) == status

    def test_validation_body_names_field(self):
        status, body = _handle(InvalidRateError("tax_rate must be a fraction in [0, 1)", field="tax_rate"))
        assert status == 422
        assert body["field"] == "tax_rate"
        assert body["error"] == "InvalidRateError"
        assert "tax_rate" in body["detail"]

    def test_stale_body_carries_current_quote(self):
        current = {"id": "q-1", "lifecycle_status": "sent", "total_value": Decimal("73.40")}
        status, body = _handle(StaleStateError("cannot send from 'sent'", current=current, action="send"))
        assert status == 409
        assert body["action"] == "send"
        assert body["current"]["lifecycle_status"] == "sent"
        assert body["current"]["total_value"] == pytest.approx(73.40)
        assert body["field"] == "lifecycle_status"

    def test_stale_body_without_serialized_quote(self):
        status, body = _handle(StaleStateError("gone"))
        assert status == 409
        assert body["current"] is None
