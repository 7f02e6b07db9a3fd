"""
Account, transaction and reward records tracked by the sync core.

Transaction records are also used as *partial updates*: any field left as
``None`` means "not carried by this update" and never erases a stored value.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import IntEnum, IntFlag
from typing import Any, Dict, Optional

from meshlib.utils.formatting import format_amount


class TxStatus(IntEnum):
    """Transaction status, ordered by rank. Ranks never go backwards."""
    PENDING = 0
    PROCESSED = 1
    SUCCESS = 2
    FAILURE = 3
    INVALID = 4

    @property
    def is_terminal(self) -> bool:
        return self >= TxStatus.SUCCESS

    @classmethod
    def parse(cls, value) -> Optional["TxStatus"]:
        if value is None:
            return None
        if isinstance(value, TxStatus):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


def _compact(value):
    """asdict() variant that drops unset fields and renders enums by name."""
    if is_dataclass(value):
        out = {}
        for f in fields(value):
            item = getattr(value, f.name)
            if item is None:
                continue
            out[f.name] = _compact(item)
        return out
    if isinstance(value, TxStatus):
        return value.name.lower()
    if isinstance(value, dict):
        return {k: _compact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_compact(v) for v in value]
    return value


@dataclass
class TxGas:
    gas_price: Optional[int] = None
    max_gas: Optional[int] = None
    fee: Optional[int] = None


@dataclass
class TxMeta:
    template_name: Optional[str] = None
    method_name: Optional[str] = None


@dataclass
class TxReceipt:
    result: Optional[str] = None
    gas_consumed: Optional[int] = None
    fee: Optional[int] = None
    layer: Optional[int] = None
    message: Optional[str] = None
    touched_addresses: Optional[list] = None


@dataclass
class Tx:
    """A transaction record (or a partial update for one)."""
    id: Optional[str] = None
    principal: Optional[str] = None
    template: Optional[str] = None
    method: Optional[int] = None
    status: Optional[TxStatus] = None
    layer: Optional[int] = None
    gas: Optional[TxGas] = None
    payload: Optional[Dict[str, Any]] = None
    meta: Optional[TxMeta] = None
    note: Optional[str] = None
    receipt: Optional[TxReceipt] = None

    def to_dict(self) -> Dict:
        return _compact(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "Tx":
        gas = data.get("gas")
        meta = data.get("meta")
        receipt = data.get("receipt")
        return cls(
            id=data.get("id"),
            principal=data.get("principal"),
            template=data.get("template"),
            method=data.get("method"),
            status=TxStatus.parse(data.get("status")),
            layer=data.get("layer"),
            gas=TxGas(**gas) if gas else None,
            payload=data.get("payload"),
            meta=TxMeta(**meta) if meta else None,
            note=data.get("note"),
            receipt=TxReceipt(**receipt) if receipt else None,
        )


@dataclass
class Reward:
    layer: int
    amount: int
    layer_reward: int
    coinbase: str

    @property
    def key(self):
        return (self.layer, self.coinbase)

    def to_dict(self) -> Dict:
        return {
            "layer": self.layer,
            "amount": self.amount,
            "layer_reward": self.layer_reward,
            "coinbase": self.coinbase,
            "amount_display": format_amount(self.amount),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Reward":
        return cls(
            layer=int(data["layer"]),
            amount=int(data["amount"]),
            layer_reward=int(data["layer_reward"]),
            coinbase=data["coinbase"],
        )


@dataclass
class AccountBalance:
    """Balance/nonce snapshot"""
    counter: int = 0
    balance: int = 0

    def to_dict(self) -> Dict:
        return {
            "counter": self.counter,
            "balance": self.balance,
            "balance_display": format_amount(self.balance),
        }


@dataclass
class AccountState:
    """Current and projected (after pending txs) snapshots for one account"""
    address: str
    current: AccountBalance = field(default_factory=AccountBalance)
    projected: AccountBalance = field(default_factory=AccountBalance)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "current": self.current.to_dict(),
            "projected": self.projected.to_dict(),
        }


@dataclass
class KeyPair:
    public_key: str
    secret_key: str


@dataclass
class SpendRequest:
    receiver: str
    amount: int
    fee: int
    note: Optional[str] = None


class AccountDataFlag(IntFlag):
    TRANSACTION_RECEIPT = 1
    REWARD = 2
    ACCOUNT = 4
