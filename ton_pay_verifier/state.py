"""
Payment intent transitions.

    awaiting --token stored--> (awaiting|pending) --miss--> pending
    pending  --match--> confirmed                     (terminal)
    pending  --miss, attempts == MAX--> awaiting      (token and address cleared)

Each function only computes the field set to write; persistence is the
store's job.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from common.errors import VerifierError
from common.models import IntentState, PaymentIntent
from common.ton_client.types import LedgerTransaction

DEFAULT_MAX_ATTEMPTS = 10


class IllegalTransition(VerifierError):
    pass


class Outcome(str, enum.Enum):
    confirmed = "confirmed"
    retry = "retry"
    timed_out = "timed_out"


@dataclass(frozen=True)
class IntentTransition:
    outcome: Outcome
    values: dict[str, Any] = field(default_factory=dict)


def _ensure_open(intent: PaymentIntent) -> None:
    if intent.state == IntentState.confirmed:
        raise IllegalTransition(f"intent {intent.id} is already confirmed")


def confirm(
    intent: PaymentIntent,
    tx: LedgerTransaction,
    *,
    now: Optional[datetime] = None,
) -> IntentTransition:
    _ensure_open(intent)
    return IntentTransition(
        outcome=Outcome.confirmed,
        values={
            "state": IntentState.confirmed,
            "confirmed_at": now or datetime.now(timezone.utc),
            "confirmed_tx_hash": tx.hash_b64,
            "confirmed_lt": tx.lt,
        },
    )


def miss(intent: PaymentIntent, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> IntentTransition:
    _ensure_open(intent)
    attempts = min(int(intent.poll_attempts or 0), max_attempts) + 1

    if attempts >= max_attempts:
        return IntentTransition(
            outcome=Outcome.timed_out,
            values={
                "state": IntentState.awaiting,
                "correlation_token": None,
                "target_address": None,
                "poll_attempts": 0,
            },
        )

    return IntentTransition(
        outcome=Outcome.retry,
        values={
            "state": IntentState.pending,
            "poll_attempts": attempts,
        },
    )
