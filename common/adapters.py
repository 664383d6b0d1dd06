from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from common.models import IntentState, NotificationGroup, PaymentIntent, User


class IntentsAdapter:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, intent_id: int) -> Optional[PaymentIntent]:
        res = await self.s.execute(select(PaymentIntent).where(PaymentIntent.id == intent_id))
        return res.scalar_one_or_none()

    async def pending(self) -> list[PaymentIntent]:
        """
        Intents that carry a correlation token and are not confirmed yet,
        in insertion order.
        """
        stmt = (
            select(PaymentIntent)
            .where(
                PaymentIntent.correlation_token.isnot(None),
                PaymentIntent.state != IntentState.confirmed,
            )
            .order_by(PaymentIntent.id.asc())
        )
        res = await self.s.execute(stmt)
        return list(res.scalars().all())

    async def add(self, intent: PaymentIntent) -> PaymentIntent:
        self.s.add(intent)
        await self.s.flush()
        return intent

    async def update_if_unchanged(
        self,
        intent_id: int,
        *,
        expected_version: int,
        expected_token: Optional[str],
        values: dict[str, Any],
    ) -> bool:
        """
        Conditional write: applies `values` only if nobody touched the row since
        it was read (same version and token) and it is not confirmed.
        Returns False when the row was changed concurrently.
        """
        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.version == expected_version,
                PaymentIntent.correlation_token == expected_token,
                PaymentIntent.state != IntentState.confirmed,
            )
            .values(**values, version=PaymentIntent.version + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        res = await self.s.execute(stmt)
        await self.s.flush()
        return (res.rowcount or 0) > 0


class UsersAdapter:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, user_id: int) -> Optional[User]:
        res = await self.s.execute(select(User).where(User.id == user_id))
        return res.scalar_one_or_none()

    async def add(self, username: Optional[str], tg_chat_id: Optional[int] = None) -> User:
        u = User(username=username, tg_chat_id=tg_chat_id)
        self.s.add(u)
        await self.s.flush()
        return u


class GroupsAdapter:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, group_id: int) -> Optional[NotificationGroup]:
        res = await self.s.execute(select(NotificationGroup).where(NotificationGroup.id == group_id))
        return res.scalar_one_or_none()

    async def add(self, title: str, tg_chat_id: int) -> NotificationGroup:
        g = NotificationGroup(title=title, tg_chat_id=tg_chat_id)
        self.s.add(g)
        await self.s.flush()
        return g


class DbAdapters:
    def __init__(self, session: AsyncSession):
        self.intents = IntentsAdapter(session)
        self.users = UsersAdapter(session)
        self.groups = GroupsAdapter(session)
        self._s = session

    async def commit(self) -> None:
        await self._s.commit()

    async def rollback(self) -> None:
        await self._s.rollback()

    async def close(self) -> None:
        await self._s.close()
