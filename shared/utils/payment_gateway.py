"""
shared/utils/payment_gateway.py
Mock payment gateway behind a circuit breaker.

No real provider is integrated. Charges succeed unless the client sends
one of the decline tokens; `tok_gateway_error` simulates an outage so the
breaker behaviour can be exercised.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from pybreaker import CircuitBreaker, CircuitBreakerListener

from config.settings import settings

logger = logging.getLogger(__name__)

DECLINE_TOKENS = {
    "tok_declined": "Card declined",
    "tok_insufficient_funds": "Insufficient funds",
}
OUTAGE_TOKEN = "tok_gateway_error"


class GatewayUnavailable(Exception):
    """Transport-level failure talking to the gateway. Counts towards the breaker."""


class _BreakerLogListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Circuit breaker '{cb.name}' changed from "
            f"{old_state.name if old_state else None} to {new_state.name}"
        )


gateway_breaker = CircuitBreaker(
    fail_max=settings.GATEWAY_BREAKER_FAIL_MAX,
    reset_timeout=settings.GATEWAY_BREAKER_RESET_SECONDS,
    listeners=[_BreakerLogListener()],
    name="payment_gateway",
)


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None


class MockPaymentGateway:
    """Stand-in for a real provider. Same call shape a real client would have."""

    def __init__(self, breaker: Optional[CircuitBreaker] = None):
        self.breaker = breaker or gateway_breaker
        self.name = settings.PAYMENT_GATEWAY_NAME

    @staticmethod
    def _transaction_id(prefix: str) -> str:
        return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8].upper()}"

    def _charge(self, amount: float, currency: str, method: str, token: Optional[str]) -> GatewayResult:
        if token == OUTAGE_TOKEN:
            raise GatewayUnavailable("Gateway connection refused")
        if token in DECLINE_TOKENS:
            return GatewayResult(success=False, failure_reason=DECLINE_TOKENS[token])
        if amount < 0:
            return GatewayResult(success=False, failure_reason="Invalid amount")
        return GatewayResult(success=True, transaction_id=self._transaction_id("MOCK_TRANS"))

    def _refund(self, transaction_id: Optional[str], amount: float) -> GatewayResult:
        if amount <= 0:
            return GatewayResult(success=False, failure_reason="Invalid refund amount")
        return GatewayResult(success=True, transaction_id=self._transaction_id("MOCK_REFUND"))

    def charge(
        self,
        amount: float,
        currency: str,
        method: str,
        token: Optional[str] = None,
    ) -> GatewayResult:
        result = self.breaker.call(self._charge, amount, currency, method, token)
        logger.info(
            f"Gateway charge {amount} {currency} via {method}: "
            f"{'ok' if result.success else result.failure_reason}"
        )
        return result

    def refund(self, transaction_id: Optional[str], amount: float) -> GatewayResult:
        return self.breaker.call(self._refund, transaction_id, amount)


def get_payment_gateway() -> MockPaymentGateway:
    """FastAPI dependency; override in tests to swap the gateway."""
    return MockPaymentGateway()
