from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pytoniq_core import Cell
from pytoniq_core.tlb.transaction import Transaction

from common.errors import LedgerUnavailable
from common.logger import Logger
from common.ton_client.types import LedgerCursor, LedgerTransaction


@dataclass(frozen=True)
class TonCenterConfig:
    endpoint: str = "https://toncenter.com/api/v2"
    api_key: str = ""


class TonCenterClient:
    """
    Async client for the toncenter v2 HTTP API.

    Only the read path the verifier needs: account history, newest first.
    Every transport or protocol failure is raised as LedgerUnavailable;
    nothing is retried here.
    """

    def __init__(
        self,
        cfg: TonCenterConfig,
        *,
        timeout_sec: float = 15.0,
        user_agent: str = "ton-pay-verifier/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cfg = cfg
        self.timeout = timeout_sec
        self.user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient = self._new_client()

    # ---------- lifecycle ----------

    def _new_client(self) -> httpx.AsyncClient:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
        if self.cfg.api_key:
            headers["X-API-Key"] = self.cfg.api_key
        return httpx.AsyncClient(
            base_url=self.cfg.endpoint.rstrip("/"),
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------- helpers ----------

    def _raise_http(self, where: str, r: httpx.Response) -> None:
        raise LedgerUnavailable(f"{where} failed: http={r.status_code} body={r.text[:300]}")

    def _parse_result_list(self, where: str, data: Any) -> list[dict[str, Any]]:
        if isinstance(data, dict) and data.get("ok") is True and isinstance(data.get("result"), list):
            return data["result"]
        raise LedgerUnavailable(f"{where} unexpected response: {data!r}"[:400])

    @staticmethod
    def _load_in_msg(item: dict[str, Any]) -> Optional[Any]:
        raw = item.get("data")
        if not raw:
            return None
        try:
            cell = Cell.one_from_boc(base64.b64decode(raw))
            tx = Transaction.deserialize(cell.begin_parse())
        except Exception as e:
            Logger.warning(
                "getTransactions: cannot parse transaction lt=%s: %s",
                (item.get("transaction_id") or {}).get("lt"),
                e,
            )
            return None
        return tx.in_msg

    # ---------- API ----------

    async def fetch_transactions(
        self,
        account: str,
        *,
        limit: int,
        before: Optional[LedgerCursor] = None,
    ) -> list[LedgerTransaction]:
        """
        GET /getTransactions
        newest first; `before` excludes the cursor transaction itself
        """
        params: dict[str, Any] = {"address": account, "limit": limit, "archival": "true"}
        if before is not None:
            # toncenter starts inclusively at (lt, hash); ask for one more and drop it
            params["lt"] = str(before.lt)
            params["hash"] = before.hash.hex()
            params["limit"] = limit + 1

        try:
            r = await self._client.get("/getTransactions", params=params)
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"getTransactions failed: {type(e).__name__}: {e}") from e

        if r.status_code != 200:
            self._raise_http("getTransactions", r)

        try:
            data = r.json()
        except ValueError:
            raise LedgerUnavailable(f"getTransactions failed: invalid json http={r.status_code} body={r.text[:300]}")

        items = self._parse_result_list("getTransactions", data)

        txs: list[LedgerTransaction] = []
        for item in items:
            try:
                tx = LedgerTransaction.from_api(item, in_msg=self._load_in_msg(item))
            except (KeyError, TypeError, ValueError) as e:
                raise LedgerUnavailable(f"getTransactions: malformed transaction id: {item!r}"[:400]) from e
            if before is not None and tx.lt == before.lt and tx.hash == before.hash:
                continue
            txs.append(tx)
        return txs[:limit]
