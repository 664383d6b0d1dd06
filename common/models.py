import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )

    username: Optional[str] = Field(default=None, sa_column=Column(String(64)))

    # telegram chat for payment notifications
    tg_chat_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), nullable=False),
    )


class NotificationGroup(SQLModel, table=True):
    __tablename__ = "notification_groups"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )

    title: str = Field(sa_column=Column(String(128), nullable=False))
    tg_chat_id: int = Field(sa_column=Column(BigInteger, nullable=False))

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), nullable=False),
    )


class IntentState(str, enum.Enum):
    awaiting = "awaiting"
    pending = "pending"
    confirmed = "confirmed"


intent_state_enum = SAEnum(
    IntentState,
    name="intent_state",
    native_enum=False,
    length=16,
)


class PaymentIntent(SQLModel, table=True):
    __tablename__ = "payment_intents"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )

    state: IntentState = Field(
        default=IntentState.awaiting,
        sa_column=Column(intent_state_enum, nullable=False, index=True),
    )

    # base64 BOC of the external-in message, or its precomputed normalized hash
    correlation_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # empty -> the configured contract address
    target_address: Optional[str] = Field(default=None, sa_column=Column(String(96), nullable=True))

    amount_nano: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    poll_attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )

    confirmed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    confirmed_tx_hash: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    confirmed_lt: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    payer_id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
    )
    payee_id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
    )
    group_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("notification_groups.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )

    # bumped on every write made by the verifier
    version: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), nullable=False),
    )
    updated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    )

    @property
    def confirmed(self) -> bool:
        return self.state == IntentState.confirmed

    def __repr__(self) -> str:
        return (
            f"PaymentIntent(id={self.id}, state={self.state!r}, attempts={self.poll_attempts}, "
            f"target={self.target_address!r})"
        )
