import re
from typing import Optional

_ADDRESS_RE = re.compile(r"^[a-z]{1,16}1[02-9ac-hj-np-z]{6,90}$")
_HEX_RE = re.compile(r"^[0-9a-f]+$", re.IGNORECASE)


def is_valid_address(addr: Optional[str]) -> bool:
    if not addr:
        return False
    return bool(_ADDRESS_RE.fullmatch(str(addr).strip()))


def is_hex(value: Optional[str], length: Optional[int] = None) -> bool:
    if value is None:
        return False
    text = str(value).lower().strip()
    if not text or (length is not None and len(text) != length):
        return False
    return bool(_HEX_RE.fullmatch(text))


def is_valid_tx_id(value: Optional[str]) -> bool:
    return is_hex(value, 64)


def is_valid_public_key(key: Optional[str]) -> bool:
    # SM2 public keys travel as the 64-byte X||Y point, hex encoded
    return is_hex(key, 128)
