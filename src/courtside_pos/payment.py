"""Payment gateway seam used by the transaction service.

Only card payments reach a gateway; cash is settled at the till. The
simulated gateway stands in for a real processor and draws declines from an
injectable random source so that tests can pin its behaviour.
"""

from __future__ import annotations

import asyncio
import random
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from . import log
from .constants import DEFAULT_CARD_DECLINE_RATE, PaymentMethod


@dataclass(frozen=True)
class PaymentRequest:
    """Single authorization call issued once per checkout attempt."""

    method: PaymentMethod
    amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class PaymentResult:
    """Gateway answer for a :class:`PaymentRequest`."""

    approved: bool
    reference: Optional[str] = None
    reason: Optional[str] = None


class PaymentGateway(Protocol):
    """Anything able to authorize a payment asynchronously."""

    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        ...


class SimulatedCardGateway:
    """Card processor stand-in that declines a configurable share of calls.

    Args:
        decline_rate (Decimal): Probability in ``[0, 1)`` that a call is
            declined.
        rng (random.Random | None): Random source; a fresh unseeded
            generator is used when omitted.
        latency (float): Seconds to sleep before answering, imitating a
            network round trip.
    """

    def __init__(
        self,
        decline_rate: Decimal = DEFAULT_CARD_DECLINE_RATE,
        *,
        rng: Optional[random.Random] = None,
        latency: float = 0.0,
    ) -> None:
        if not Decimal("0") <= decline_rate < Decimal("1"):
            raise ValueError(f"Decline rate must be in [0, 1), got {decline_rate}")
        self.decline_rate = decline_rate
        self.latency = latency
        self._rng = rng or random.Random()

    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        if self._rng.random() < float(self.decline_rate):
            log.info("Simulated gateway declined %s payment of %s", request.method.value, request.amount)
            return PaymentResult(approved=False, reason="payment_declined")
        reference = f"AUTH-{uuid.uuid4().hex[:12].upper()}"
        log.debug("Simulated gateway approved payment '%s'", reference)
        return PaymentResult(approved=True, reference=reference)


__all__ = [
    "PaymentRequest",
    "PaymentResult",
    "PaymentGateway",
    "SimulatedCardGateway",
]
