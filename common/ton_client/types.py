from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class LedgerCursor:
    """Position in an account's history: (lt, hash) of a transaction."""

    lt: int
    hash: bytes


@dataclass(frozen=True)
class LedgerTransaction:
    lt: int
    hash: bytes
    in_msg: Optional[Any] = None
    utime: Optional[int] = None

    @property
    def cursor(self) -> LedgerCursor:
        return LedgerCursor(lt=self.lt, hash=self.hash)

    @property
    def hash_b64(self) -> str:
        return base64.b64encode(self.hash).decode()

    @classmethod
    def from_api(cls, item: dict[str, Any], in_msg: Optional[Any] = None) -> "LedgerTransaction":
        tx_id = item.get("transaction_id") or {}
        return cls(
            lt=int(tx_id["lt"]),
            hash=base64.b64decode(tx_id["hash"]),
            in_msg=in_msg,
            utime=item.get("utime"),
        )
