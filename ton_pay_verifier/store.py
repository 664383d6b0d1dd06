from __future__ import annotations

from typing import Any, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from common.adapters import DbAdapters
from common.db import db_call
from common.errors import DatastoreError
from common.models import PaymentIntent
from ton_pay_verifier.state import IntentTransition


class IntentStore(Protocol):
    async def list_pending(self) -> list[PaymentIntent]:
        ...

    async def apply(self, intent: PaymentIntent, transition: IntentTransition) -> bool:
        ...

    async def get_related(self, kind: str, entity_id: int) -> Optional[Any]:
        ...


class SqlIntentStore:
    async def _call(self, where: str, fn) -> Any:
        try:
            return await db_call(fn)
        except SQLAlchemyError as e:
            raise DatastoreError(f"{where} failed: {e}") from e

    async def list_pending(self) -> list[PaymentIntent]:
        return await self._call("list_pending", lambda db: db.intents.pending())

    async def apply(self, intent: PaymentIntent, transition: IntentTransition) -> bool:
        async def work(db: DbAdapters) -> bool:
            return await db.intents.update_if_unchanged(
                intent.id,
                expected_version=intent.version,
                expected_token=intent.correlation_token,
                values=transition.values,
            )

        return await self._call(f"apply({intent.id}, {transition.outcome.value})", work)

    async def get_related(self, kind: str, entity_id: int) -> Optional[Any]:
        if kind == "user":
            return await self._call("get_related(user)", lambda db: db.users.get(entity_id))
        if kind == "group":
            return await self._call("get_related(group)", lambda db: db.groups.get(entity_id))
        raise ValueError(f"unknown related entity kind: {kind!r}")
