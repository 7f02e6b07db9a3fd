"""Runtime configuration profiles for meshlib."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

PROFILE = os.getenv("MESHLIB_PROFILE", "desktop")

PROFILES: Dict[str, Dict[str, str]] = {
    "desktop": {
        "MESHLIB_QUERY_BATCH_SIZE": "100",
        "MESHLIB_QUERY_RETRIES": "5",
        "MESHLIB_RETRY_DELAY": "1.0",
        "MESHLIB_UI_DEBOUNCE": "0.1",
        "MESHLIB_RESUBSCRIBE_DEBOUNCE": "0.1",
        "MESHLIB_POLL_INTERVAL": "5",
    },
    "test": {
        "MESHLIB_QUERY_BATCH_SIZE": "100",
        "MESHLIB_QUERY_RETRIES": "5",
        "MESHLIB_RETRY_DELAY": "0",
        "MESHLIB_UI_DEBOUNCE": "0.01",
        "MESHLIB_RESUBSCRIBE_DEBOUNCE": "0.01",
        "MESHLIB_POLL_INTERVAL": "0.05",
    },
}


def apply_profile(profile: Optional[str] = None) -> None:
    profile = profile or os.getenv("MESHLIB_PROFILE", PROFILE)
    if not profile:
        return
    settings = PROFILES.get(profile)
    if not settings:
        return
    for key, value in settings.items():
        os.environ.setdefault(key, value)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class SyncSettings:
    """Tunables for the synchronization core."""
    batch_size: int = 100
    max_retries: int = 5
    retry_delay: float = 1.0
    ui_debounce: float = 0.1
    resubscribe_debounce: float = 0.1
    max_gas: int = 500
    address_hrp: str = "sm"
    data_dir: Optional[str] = None
    poll_interval: float = 5.0
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            batch_size=max(1, _env_int("MESHLIB_QUERY_BATCH_SIZE", 100)),
            max_retries=max(0, _env_int("MESHLIB_QUERY_RETRIES", 5)),
            retry_delay=max(0.0, _env_float("MESHLIB_RETRY_DELAY", 1.0)),
            ui_debounce=max(0.0, _env_float("MESHLIB_UI_DEBOUNCE", 0.1)),
            resubscribe_debounce=max(0.0, _env_float("MESHLIB_RESUBSCRIBE_DEBOUNCE", 0.1)),
            max_gas=max(1, _env_int("MESHLIB_MAX_GAS", 500)),
            address_hrp=os.getenv("MESHLIB_ADDRESS_HRP", "sm"),
            data_dir=os.getenv("MESHLIB_DATA_DIR") or None,
            poll_interval=max(0.0, _env_float("MESHLIB_POLL_INTERVAL", 5.0)),
            http_timeout=max(0.1, _env_float("MESHLIB_HTTP_TIMEOUT", 10.0)),
        )
