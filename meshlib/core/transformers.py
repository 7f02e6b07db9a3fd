"""Conversions from remote payloads (plain dicts) into local records."""

from typing import Any, Dict, Optional, Tuple

from meshlib.core.types import AccountBalance, Reward, Tx, TxGas, TxReceipt, TxStatus

_PENDING_STATES = {"unspecified", "mempool", "mesh"}
_REFUSED_STATES = {"rejected", "conflicting", "insufficient_funds"}
_RESULTS = {
    "success": TxStatus.SUCCESS,
    "failure": TxStatus.FAILURE,
    "invalid": TxStatus.INVALID,
}


def _unwrap(value: Any, key: str) -> Any:
    # Remote messages wrap scalars, e.g. {"layer": {"number": 7}}
    if isinstance(value, dict):
        return value.get(key)
    return value


def to_hex(value: Any) -> Optional[str]:
    value = _unwrap(value, "id")
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex() or None
    text = str(value).strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return text or None


def _normalize_state(value: Any) -> str:
    text = str(value).strip().lower()
    for prefix in ("transaction_state_", "transaction_result_"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    return text


def to_tx_status(state: Any, result: Any = None) -> Optional[TxStatus]:
    """Map a remote transaction state (and optional result) onto TxStatus."""
    if isinstance(state, TxStatus):
        return state
    if result is not None:
        status = _RESULTS.get(_normalize_state(result))
        if status is not None:
            return status
    if state is None:
        return None
    name = _normalize_state(state)
    if name in _PENDING_STATES:
        return TxStatus.PENDING
    if name == "processed":
        return TxStatus.PROCESSED
    if name in _REFUSED_STATES:
        return TxStatus.INVALID
    if name in _RESULTS:
        return _RESULTS[name]
    return None


def _to_int(value: Any, key: str = "value") -> Optional[int]:
    value = _unwrap(value, key)
    if value is None:
        return None
    return int(value)


def tx_from_raw(raw: Optional[Dict], status: Optional[TxStatus] = None) -> Optional[Tx]:
    """Build a Tx from a remote transaction message. None if it has no id."""
    if not raw:
        return None
    tx_id = to_hex(raw.get("id"))
    if not tx_id:
        return None

    gas_price = _to_int(raw.get("gas_price"))
    max_gas = _to_int(raw.get("max_gas"))
    gas = None
    if gas_price is not None or max_gas is not None:
        fee = gas_price * max_gas if gas_price is not None and max_gas is not None else None
        gas = TxGas(gas_price=gas_price, max_gas=max_gas, fee=fee)

    return Tx(
        id=tx_id,
        principal=_unwrap(raw.get("principal"), "address"),
        template=_unwrap(raw.get("template"), "address"),
        method=raw.get("method"),
        status=status,
        layer=_to_int(raw.get("layer"), "number"),
        gas=gas,
        payload=raw.get("payload"),
    )


def add_receipt(tx: Tx, raw_receipt: Optional[Dict]) -> Tx:
    if not raw_receipt:
        return tx
    tx.receipt = TxReceipt(
        result=raw_receipt.get("result"),
        gas_consumed=_to_int(raw_receipt.get("gas_consumed")),
        fee=_to_int(raw_receipt.get("fee")),
        layer=_to_int(raw_receipt.get("layer"), "number"),
        message=raw_receipt.get("message"),
        touched_addresses=raw_receipt.get("touched_addresses"),
    )
    return tx


def reward_from_raw(raw: Optional[Dict]) -> Optional[Reward]:
    """Parse a reward message; None when any required field is missing."""
    if not raw:
        return None
    layer = _to_int(raw.get("layer"), "number")
    total = _to_int(raw.get("total"))
    layer_reward = _to_int(raw.get("layer_reward"))
    coinbase = _unwrap(raw.get("coinbase"), "address")
    if layer is None or total is None or layer_reward is None or not coinbase:
        return None
    return Reward(layer=layer, amount=total, layer_reward=layer_reward, coinbase=coinbase)


def _balance(raw: Optional[Dict]) -> AccountBalance:
    raw = raw or {}
    return AccountBalance(
        counter=_to_int(raw.get("counter")) or 0,
        balance=_to_int(raw.get("balance")) or 0,
    )


def balances_from_account(data: Dict) -> Tuple[AccountBalance, AccountBalance]:
    """Current and projected snapshots from an account-data message."""
    account = data.get("account_wrapper") or data.get("account") or data
    return _balance(account.get("state_current")), _balance(account.get("state_projected"))
