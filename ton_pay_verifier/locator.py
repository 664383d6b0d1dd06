from __future__ import annotations

from typing import Optional, Protocol

from common.errors import InvalidMessageKind
from common.logger import Logger
from common.ton_client.types import LedgerCursor, LedgerTransaction
from ton_pay_verifier.canonical import canonical_digest

DEFAULT_PAGE_SIZE = 20
DEFAULT_MAX_PAGES = 50


class LedgerClient(Protocol):
    async def fetch_transactions(
        self,
        account: str,
        *,
        limit: int,
        before: Optional[LedgerCursor] = None,
    ) -> list[LedgerTransaction]:
        ...


class TransactionLocator:
    """Walks an account's history newest-first looking for a normalized in-message hash."""

    def __init__(
        self,
        client: LedgerClient,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self._client = client
        self._page_size = max(1, int(page_size))
        self._max_pages = max(1, int(max_pages))

    async def find(
        self,
        digest: bytes,
        account: str,
        *,
        before: Optional[LedgerCursor] = None,
    ) -> Optional[LedgerTransaction]:
        cursor = before
        for _ in range(self._max_pages):
            txs = await self._client.fetch_transactions(account, limit=self._page_size, before=cursor)
            if not txs:
                return None

            found = self._match_page(digest, txs)
            if found is not None:
                return found

            cursor = txs[-1].cursor

        Logger.warning(
            "Locator: gave up on %s after %d pages (%d txs each), last lt=%s",
            account,
            self._max_pages,
            self._page_size,
            cursor.lt if cursor else None,
        )
        return None

    @staticmethod
    def _match_page(digest: bytes, txs: list[LedgerTransaction]) -> Optional[LedgerTransaction]:
        matches: list[LedgerTransaction] = []
        for tx in txs:
            if tx.in_msg is None:
                continue
            try:
                h = canonical_digest(tx.in_msg)
            except InvalidMessageKind:
                continue
            except Exception as e:
                Logger.debug("Locator: cannot normalize in_msg of lt=%s: %s", tx.lt, e)
                continue
            if h == digest:
                matches.append(tx)

        if not matches:
            return None
        if len(matches) > 1:
            # collision policy is undecided; newest wins and the rest are reported
            Logger.warning(
                "Locator: %d transactions share digest %s: %s",
                len(matches),
                digest.hex(),
                ", ".join(f"lt={m.lt}" for m in matches),
            )
        return matches[0]
