"""
Normalized hashing of external-in messages.

The same external message is seen twice: once by the payer (the BOC the
wallet sent, stored as the intent's correlation token) and once in the
contract's history after inclusion. Validators may rewrite the sender and
import fee and drop the state init, so both sides are reduced to the same
canonical envelope before hashing:

    ext_in_msg_info$10 src:addr_none dest:<dest> import_fee:0
    init:nothing body:^Cell

The representation hash of that cell is the correlation digest.
"""
from __future__ import annotations

import base64
import binascii
import re
from typing import Any

from pytoniq_core import Cell, begin_cell
from pytoniq_core.tlb.transaction import ExternalMsgInfo, MessageAny

from common.errors import InvalidCorrelationToken, InvalidMessageKind

DIGEST_SIZE = 32

_re_hex_digest = re.compile(r"^[0-9a-fA-F]{64}$")


def parse_message(boc: bytes) -> MessageAny:
    return MessageAny.deserialize(Cell.one_from_boc(boc).begin_parse())


def canonical_cell(msg: Any) -> Cell:
    info = msg.info
    if not isinstance(info, ExternalMsgInfo):
        raise InvalidMessageKind(f"expected external-in message, got {type(info).__name__}")

    body = msg.body if msg.body is not None else begin_cell().end_cell()
    return (
        begin_cell()
        .store_uint(0b10, 2)  # ext_in_msg_info$10
        .store_uint(0b00, 2)  # src: addr_none
        .store_address(info.dest)
        .store_coins(0)  # import_fee
        .store_bit(0)  # init: nothing
        .store_bit(1)  # body in a ref
        .store_ref(body)
        .end_cell()
    )


def canonical_digest(msg: Any) -> bytes:
    return canonical_cell(msg).hash


def target_digest(token: str) -> bytes:
    """
    Resolve a stored correlation token into the digest to look for.

    Accepted forms: 64 hex chars or base64 of 32 bytes (already a digest),
    otherwise a base64 BOC of the external-in message.
    """
    value = (token or "").strip()
    if not value:
        raise InvalidCorrelationToken("empty correlation token")

    if _re_hex_digest.match(value):
        return bytes.fromhex(value)

    altchars = b"-_" if ("-" in value or "_" in value) else None
    padded = value.rstrip("=") + "=" * (-len(value.rstrip("=")) % 4)
    try:
        raw = base64.b64decode(padded, altchars=altchars, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidCorrelationToken(f"correlation token is not base64: {e}") from e

    if len(raw) == DIGEST_SIZE:
        return raw

    try:
        msg = parse_message(raw)
    except Exception as e:
        raise InvalidCorrelationToken(f"correlation token is not a message BOC: {e}") from e

    try:
        return canonical_digest(msg)
    except InvalidMessageKind as e:
        raise InvalidCorrelationToken(f"correlation token is not an external-in message: {e}") from e
