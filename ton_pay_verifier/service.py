from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from common.errors import InvalidCorrelationToken
from common.logger import Logger
from common.models import PaymentIntent
from common.ton_client.types import LedgerTransaction
from ton_pay_verifier import state
from ton_pay_verifier.canonical import target_digest
from ton_pay_verifier.notifier import Notifier
from ton_pay_verifier.poller import ConfirmationPoller
from ton_pay_verifier.state import IllegalTransition, IntentTransition, Outcome
from ton_pay_verifier.store import IntentStore

NANO = Decimal(10) ** 9


@dataclass
class BatchReport:
    confirmed: int = 0
    retried: int = 0
    timed_out: int = 0
    failed: int = 0
    conflicts: int = 0

    @property
    def total(self) -> int:
        return self.confirmed + self.retried + self.timed_out + self.failed + self.conflicts


class ReconciliationService:
    def __init__(
        self,
        *,
        store: IntentStore,
        poller: ConfirmationPoller,
        notifier: Notifier,
        default_account: str,
        max_attempts: int = state.DEFAULT_MAX_ATTEMPTS,
        concurrency: int = 4,
        poll_interval_seconds: int = 60,
        admin_chat_id: Optional[int | str] = None,
    ) -> None:
        self._store = store
        self._poller = poller
        self._notifier = notifier
        self._default_account = default_account
        self._max_attempts = max_attempts
        self._concurrency = max(1, int(concurrency))
        self._poll_interval_seconds = poll_interval_seconds
        self._admin_chat_id = admin_chat_id

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        while stop_event is None or not stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                Logger.exception("Reconciliation cycle failed")
            if stop_event is None:
                await asyncio.sleep(self._poll_interval_seconds)
            else:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass

    async def run_once(self) -> BatchReport:
        report = BatchReport()

        intents = await self._store.list_pending()
        if not intents:
            return report

        Logger.info("Pending payment intents: %d", len(intents))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(intent: PaymentIntent) -> Optional[LedgerTransaction]:
            async with semaphore:
                return await self._poll_intent(intent)

        results = await asyncio.gather(
            *(guarded(intent) for intent in intents),
            return_exceptions=True,
        )

        for intent, result in zip(intents, results):
            if isinstance(result, Exception):
                Logger.error("PaymentIntent#%s: polling failed: %r", intent.id, result, exc_info=result)
                report.failed += 1
                continue
            if isinstance(result, BaseException):
                raise result

            try:
                transition = self._transition_for(intent, result)
            except IllegalTransition as e:
                Logger.warning("PaymentIntent#%s: %s", intent.id, e)
                report.failed += 1
                continue

            applied = await self._store.apply(intent, transition)
            if not applied:
                Logger.warning(
                    "PaymentIntent#%s changed concurrently, %s not applied",
                    intent.id,
                    transition.outcome.value,
                )
                report.conflicts += 1
                continue

            if transition.outcome == Outcome.confirmed:
                report.confirmed += 1
                Logger.info("PaymentIntent#%s confirmed (txHash=%s)", intent.id, result.hash_b64)
            elif transition.outcome == Outcome.timed_out:
                report.timed_out += 1
                Logger.info("PaymentIntent#%s timed out after %d attempts, reset", intent.id, self._max_attempts)
            else:
                report.retried += 1
                Logger.info(
                    "PaymentIntent#%s not confirmed yet (attempt %s/%d)",
                    intent.id,
                    transition.values.get("poll_attempts"),
                    self._max_attempts,
                )

            if transition.outcome != Outcome.retry:
                await self._notify(intent, transition, result)

        Logger.info(
            "Reconciliation done: confirmed=%d retried=%d timed_out=%d failed=%d conflicts=%d",
            report.confirmed,
            report.retried,
            report.timed_out,
            report.failed,
            report.conflicts,
        )
        return report

    async def _poll_intent(self, intent: PaymentIntent) -> Optional[LedgerTransaction]:
        try:
            digest = target_digest(intent.correlation_token)
        except InvalidCorrelationToken as e:
            Logger.warning("PaymentIntent#%s: unusable correlation token: %s", intent.id, e)
            return None

        account = intent.target_address or self._default_account
        Logger.info("Checking PaymentIntent#%s on %s", intent.id, account)
        return await self._poller.wait_for(digest, account)

    def _transition_for(
        self,
        intent: PaymentIntent,
        tx: Optional[LedgerTransaction],
    ) -> IntentTransition:
        if tx is not None:
            return state.confirm(intent, tx)
        return state.miss(intent, max_attempts=self._max_attempts)

    # ---------- notifications ----------

    async def _notify(
        self,
        intent: PaymentIntent,
        transition: IntentTransition,
        tx: Optional[LedgerTransaction],
    ) -> None:
        try:
            related = await self._load_related(intent)
            target = self._pick_target(related)
            if target is None:
                Logger.info("PaymentIntent#%s: no notification target", intent.id)
                return
            text = self._compose(intent, transition, tx, related)
            await self._notifier.send(target, text)
        except Exception:
            Logger.exception("PaymentIntent#%s: notification failed", intent.id)

    async def _load_related(self, intent: PaymentIntent) -> dict[str, Any]:
        related: dict[str, Any] = {}
        for key, kind, entity_id in (
            ("payer", "user", intent.payer_id),
            ("payee", "user", intent.payee_id),
            ("group", "group", intent.group_id),
        ):
            if entity_id is None:
                continue
            try:
                related[key] = await self._store.get_related(kind, entity_id)
            except Exception as e:
                Logger.warning("PaymentIntent#%s: cannot load %s %s: %s", intent.id, key, entity_id, e)
        return related

    def _pick_target(self, related: dict[str, Any]) -> Optional[int | str]:
        for key in ("group", "payee", "payer"):
            chat_id = getattr(related.get(key), "tg_chat_id", None)
            if chat_id is not None:
                return chat_id
        return self._admin_chat_id

    @staticmethod
    def _display_user(user: Any) -> Optional[str]:
        if user is None:
            return None
        username = getattr(user, "username", None)
        if username:
            return username if username.startswith("@") else f"@{username}"
        return f"user#{user.id}"

    def _compose(
        self,
        intent: PaymentIntent,
        transition: IntentTransition,
        tx: Optional[LedgerTransaction],
        related: dict[str, Any],
    ) -> str:
        if transition.outcome == Outcome.confirmed:
            lines = [f"✅ Payment #{intent.id} confirmed"]
        else:
            lines = [
                f"⌛ Payment #{intent.id} was not confirmed after {self._max_attempts} checks.",
                "The request was reset, please send the payment again.",
            ]

        payer = self._display_user(related.get("payer"))
        payee = self._display_user(related.get("payee"))
        if payer:
            lines.append(f"Payer: {payer}")
        if payee:
            lines.append(f"Payee: {payee}")
        if intent.amount_nano is not None:
            amount = (Decimal(intent.amount_nano) / NANO).normalize()
            lines.append(f"Amount: {amount:f} TON")
        if tx is not None:
            lines.append(f"Tx: {tx.hash_b64}")
        return "\n".join(lines)
