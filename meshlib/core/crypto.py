"""
Default key, address and signing collaborators.

Addresses are the bech32 encoding of a 24-byte principal, the tail of the
SM3 digest of the template key and the account's public key. Signatures are
SM2 (with the SM3 Z-value pre-hash) over the transaction hash.
"""

from typing import Optional, Tuple

from bech32 import bech32_decode, bech32_encode, convertbits
from gmssl import func, sm2, sm3

from meshlib.utils.validation import is_valid_public_key

PRINCIPAL_SIZE = 24
# Single-signature wallet template, addressed by a fixed key
SINGLE_SIG_TEMPLATE_KEY = bytes(PRINCIPAL_SIZE - 1) + b"\x01"
SINGLE_SIG_TEMPLATE_NAME = "Wallet"
METHOD_NAMES = {0: "Spawn", 16: "Spend"}
METHOD_SPAWN = 0
METHOD_SPEND = 16


def sm3_digest(data: bytes) -> bytes:
    return bytes.fromhex(sm3.sm3_hash(func.bytes_to_list(data)))


def principal_from_public_key(public_key: str, template_key: bytes = SINGLE_SIG_TEMPLATE_KEY) -> bytes:
    if not is_valid_public_key(public_key):
        raise ValueError("Invalid public key")
    return sm3_digest(template_key + bytes.fromhex(public_key))[-PRINCIPAL_SIZE:]


def encode_address(principal: bytes, hrp: str = "sm") -> str:
    return bech32_encode(hrp, convertbits(principal, 8, 5))


def decode_address(address: str) -> Tuple[str, bytes]:
    """Split an address into (hrp, principal). Raises ValueError."""
    hrp, data = bech32_decode(address)
    if hrp is None or data is None:
        raise ValueError(f"invalid bech32 address: {address}")
    principal = convertbits(data, 5, 8, False)
    if principal is None or len(principal) != PRINCIPAL_SIZE:
        raise ValueError(f"invalid principal in address: {address}")
    return hrp, bytes(principal)


def derive_address(public_key: str, hrp: str = "sm") -> str:
    return encode_address(principal_from_public_key(public_key), hrp)


def template_address(hrp: str = "sm") -> str:
    return encode_address(SINGLE_SIG_TEMPLATE_KEY, hrp)


def public_key_from_secret(secret_key: str) -> str:
    crypt = sm2.CryptSM2(private_key=secret_key, public_key="")
    return crypt._kg(int(secret_key, 16), sm2.default_ecc_table["g"])


def generate_keypair() -> Tuple[str, str]:
    """Return a fresh (public_key, secret_key) hex pair."""
    secret_key = func.random_hex(64)
    return public_key_from_secret(secret_key), secret_key


class Sm2Signer:
    """sign(hash, secret_key) -> signature bytes"""

    def sign(self, digest: bytes, secret_key: str, public_key: Optional[str] = None) -> bytes:
        public_key = public_key or public_key_from_secret(secret_key)
        crypt = sm2.CryptSM2(private_key=secret_key, public_key=public_key)
        return bytes.fromhex(crypt.sign_with_sm3(digest))

    def verify(self, digest: bytes, signature: bytes, public_key: str) -> bool:
        crypt = sm2.CryptSM2(private_key="", public_key=public_key)
        return bool(crypt.verify_with_sm3(signature.hex(), digest))
