import hashlib
from typing import Dict, Optional, Tuple

import msgpack

from meshlib.core.crypto import (
    METHOD_NAMES,
    METHOD_SPAWN,
    METHOD_SPEND,
    SINGLE_SIG_TEMPLATE_KEY,
    SINGLE_SIG_TEMPLATE_NAME,
    Sm2Signer,
    decode_address,
    principal_from_public_key,
    template_address,
)
from meshlib.core.types import KeyPair, Tx, TxGas, TxMeta, TxStatus
from meshlib.utils.validation import is_valid_address

MAX_GAS = 500

SELF_SPAWN = "self_spawn"
SPEND = "spend"


class FeeCalculator:
    """Fee is the gas price times the gas limit of the template."""

    def __init__(self, max_gas: int = MAX_GAS):
        self.max_gas = max_gas

    def get_fee(self, gas_price: int) -> int:
        return int(gas_price) * self.max_gas


class TransactionBuilder:
    """Encodes, hashes and signs self-spawn and spend transactions."""

    def __init__(self, signer=None, max_gas: int = MAX_GAS, hrp: str = "sm"):
        self.signer = signer or Sm2Signer()
        self.fee_calculator = FeeCalculator(max_gas)
        self.hrp = hrp

    @property
    def max_gas(self) -> int:
        return self.fee_calculator.max_gas

    def build_payload(self, kind: str, keypair: KeyPair, nonce: int, gas_price: int,
                      receiver: Optional[str] = None, amount: Optional[int] = None) -> Tuple[int, Dict, Dict]:
        """Return (method, wire arguments, display payload)."""
        if int(gas_price) < 0:
            raise ValueError("Gas price must not be negative")
        nonce_fields = {"counter": int(nonce), "bitfield": 0}

        if kind == SELF_SPAWN:
            wire_args = {"public_key": bytes.fromhex(keypair.public_key)}
            payload = {
                "nonce": nonce_fields,
                "gas_price": int(gas_price),
                "arguments": {"public_key": keypair.public_key},
            }
            return METHOD_SPAWN, wire_args, payload

        if kind == SPEND:
            if not is_valid_address(receiver):
                raise ValueError("Invalid receiver address")
            if amount is None or int(amount) <= 0:
                raise ValueError("Amount must be positive")
            _, destination = decode_address(receiver)
            wire_args = {"destination": destination, "amount": int(amount)}
            payload = {
                "nonce": nonce_fields,
                "gas_price": int(gas_price),
                "arguments": {"destination": receiver, "amount": int(amount)},
            }
            return METHOD_SPEND, wire_args, payload

        raise ValueError(f"Unknown transaction kind: {kind}")

    def encode(self, principal: bytes, method: int, nonce: int, gas_price: int, wire_args: Dict) -> bytes:
        return msgpack.packb(
            {
                "version": 0,
                "principal": principal,
                "template": SINGLE_SIG_TEMPLATE_KEY,
                "method": method,
                "nonce": {"counter": int(nonce), "bitfield": 0},
                "gas_price": int(gas_price),
                "arguments": wire_args,
            },
            use_bin_type=True,
        )

    @staticmethod
    def signing_hash(genesis_id: bytes, encoded: bytes) -> bytes:
        return hashlib.sha256(bytes(genesis_id) + encoded).digest()

    def sign(self, encoded: bytes, genesis_id: bytes, secret_key: str) -> bytes:
        signature = self.signer.sign(self.signing_hash(genesis_id, encoded), secret_key)
        return encoded + bytes(signature)

    def build(self, kind: str, keypair: KeyPair, nonce: int, gas_price: int, genesis_id: bytes,
              receiver: Optional[str] = None, amount: Optional[int] = None) -> Tuple[bytes, int, Dict]:
        """Return (signed bytes, method, display payload)."""
        method, wire_args, payload = self.build_payload(kind, keypair, nonce, gas_price, receiver, amount)
        principal = principal_from_public_key(keypair.public_key)
        encoded = self.encode(principal, method, nonce, gas_price, wire_args)
        return self.sign(encoded, genesis_id, keypair.secret_key), method, payload

    def optimistic_tx(self, tx_id: str, status: Optional[TxStatus], principal: str, method: int,
                      gas_price: int, payload: Dict, layer: Optional[int],
                      note: Optional[str] = None) -> Tx:
        """The local record shown until the network confirms the transaction."""
        return Tx(
            id=tx_id,
            principal=principal,
            template=template_address(self.hrp),
            method=method,
            status=status if status is not None else TxStatus.PENDING,
            layer=layer,
            gas=TxGas(
                gas_price=int(gas_price),
                max_gas=self.max_gas,
                fee=self.fee_calculator.get_fee(gas_price),
            ),
            payload=payload,
            meta=TxMeta(
                template_name=SINGLE_SIG_TEMPLATE_NAME,
                method_name=METHOD_NAMES.get(method),
            ),
            note=note,
        )
