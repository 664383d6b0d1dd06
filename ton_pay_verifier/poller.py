from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from common.errors import LedgerUnavailable
from common.logger import Logger
from common.ton_client.types import LedgerTransaction
from ton_pay_verifier.locator import TransactionLocator

DEFAULT_MAX_RETRIES = 20
DEFAULT_DELAY_SECONDS = 2.0


class ConfirmationPoller:
    def __init__(
        self,
        locator: TransactionLocator,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._locator = locator
        self._max_retries = max(1, int(max_retries))
        self._delay_seconds = max(0.0, float(delay_seconds))
        self._sleep = sleep

    async def wait_for(self, digest: bytes, account: str) -> Optional[LedgerTransaction]:
        """
        Up to max_retries locator scans, each miss followed by delay_seconds,
        so a miss costs at most max_retries * delay_seconds.
        A ledger outage costs one attempt, it is not retried inside the scan.
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                tx = await self._locator.find(digest, account)
            except LedgerUnavailable as e:
                Logger.warning("Poller: ledger unavailable (attempt %d/%d): %s", attempt, self._max_retries, e)
                tx = None

            if tx is not None:
                return tx

            await self._sleep(self._delay_seconds)

        return None
