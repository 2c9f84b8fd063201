"""
Transfer events, per-token ownership records and per-holder accrual rows
"""

import re
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(addr):
    """Lowercase a 0x address, rejecting anything that is not 20 bytes of hex"""
    value = str(addr or "").strip()
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"invalid address: {addr!r}")
    return value.lower()


def to_int(value):
    """Parse explorer/RPC numbers which come as ints, decimal strings or 0x-hex"""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text in ("", "0x", "0X"):
        return 0
    if text.startswith(("0x", "0X")):
        return Web3.to_int(hexstr=text)
    return int(text)


def address_from_topic(topic):
    # Indexed addresses are left-padded to 32 bytes
    if isinstance(topic, (bytes, bytearray)):
        topic = Web3.to_hex(topic)
    text = str(topic or "")
    if len(text) < 42:
        return ZERO_ADDRESS
    return "0x" + text[-40:].lower()


def token_id_from_topic(topic):
    if isinstance(topic, (bytes, bytearray)):
        return int.from_bytes(topic, "big")
    return to_int(topic)


@dataclass(frozen=True)
class TransferEvent:
    block_number: int
    log_index: int
    timestamp: int
    sender: str
    recipient: str
    token_id: int
    tx_hash: str = ""

    @property
    def order_key(self):
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class LatestTransfer:
    token_id: int
    owner: str
    received_at: int
    block_number: int
    log_index: int

    @classmethod
    def from_event(cls, event):
        return cls(
            token_id=event.token_id,
            owner=event.recipient,
            received_at=event.timestamp,
            block_number=event.block_number,
            log_index=event.log_index,
        )

    @property
    def order_key(self):
        return (self.block_number, self.log_index)

    @property
    def is_burned(self):
        return self.owner == ZERO_ADDRESS


@dataclass(frozen=True)
class HolderAccrual:
    address: str
    tokens: int
    holding_seconds: int
    periods: int
    points: int

    def to_dict(self):
        return {
            "address": self.address,
            "tokens": self.tokens,
            "holdingSeconds": self.holding_seconds,
            "periods": self.periods,
            "points": self.points,
        }


@dataclass(frozen=True)
class RuleConfig:
    start_epoch: int
    window_seconds: int = 6 * 60 * 60
    points_per_window: int = 10
    target_supply: Optional[int] = None

    @property
    def window_hours(self):
        hours = self.window_seconds / 3600
        return int(hours) if hours.is_integer() else hours
