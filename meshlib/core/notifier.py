"""UI boundary: named state-change events, coalesced per account."""

from typing import Callable, Dict, List, Optional

from meshlib.core.account_state import AccountStateStore
from meshlib.core.debounce import Debouncer
from meshlib.utils.console import log_error

ACCOUNT_UPDATED = "account-updated"
TXS_UPDATED = "txs-updated"
REWARDS_UPDATED = "rewards-updated"


class UiChannel:
    """One-way push channel. Subclass and override ``send``."""

    def send(self, event: str, payload: Dict) -> None:
        raise NotImplementedError


class Notifier:
    """
    Builds event payloads from the live store and pushes them to the UI
    channel and any registered callbacks. ``schedule_*`` calls coalesce
    within ``delay``; ``emit_*`` calls go out immediately.
    """

    def __init__(self, get_store: Callable[[str], Optional[AccountStateStore]],
                 channel: Optional[UiChannel] = None, delay: float = 0.1):
        self.get_store = get_store
        self.channel = channel
        self.callbacks: List[Callable[[str, Dict], None]] = []
        self._debouncers = {
            ACCOUNT_UPDATED: Debouncer(delay, name=ACCOUNT_UPDATED),
            TXS_UPDATED: Debouncer(delay, name=TXS_UPDATED),
            REWARDS_UPDATED: Debouncer(delay, name=REWARDS_UPDATED),
        }
        self._builders = {
            ACCOUNT_UPDATED: self._account_payload,
            TXS_UPDATED: self._txs_payload,
            REWARDS_UPDATED: self._rewards_payload,
        }

    def on_update(self, callback: Callable[[str, Dict], None]) -> None:
        self.callbacks.append(callback)

    # =========================================================================
    # Payloads
    # =========================================================================

    @staticmethod
    def _account_payload(address: str, store: AccountStateStore) -> Dict:
        return {"account": store.get_state().to_dict(), "account_id": address}

    @staticmethod
    def _txs_payload(address: str, store: AccountStateStore) -> Dict:
        txs = {tx_id: tx.to_dict() for tx_id, tx in store.get_txs().items()}
        return {"txs": txs, "public_key": address}

    @staticmethod
    def _rewards_payload(address: str, store: AccountStateStore) -> Dict:
        return {"rewards": [r.to_dict() for r in store.get_rewards()], "public_key": address}

    # =========================================================================
    # Delivery
    # =========================================================================

    def emit(self, event: str, address: str) -> bool:
        store = self.get_store(address)
        if store is None:
            return False
        payload = self._builders[event](address, store)
        if self.channel is not None:
            try:
                self.channel.send(event, payload)
            except Exception as e:
                log_error(f"UiChannel.send({event})", e)
        for callback in self.callbacks:
            try:
                callback(event, payload)
            except Exception as e:
                log_error(f"{event} callback", e)
        return True

    def schedule(self, event: str, address: str) -> None:
        self._debouncers[event].schedule(address, lambda: self.emit(event, address))

    def account_changed(self, address: str) -> None:
        self.schedule(ACCOUNT_UPDATED, address)

    def txs_changed(self, address: str) -> None:
        self.schedule(TXS_UPDATED, address)

    def rewards_changed(self, address: str) -> None:
        self.schedule(REWARDS_UPDATED, address)

    def emit_all(self, address: str) -> None:
        """Push the cached state of an account right away."""
        for event in (ACCOUNT_UPDATED, TXS_UPDATED, REWARDS_UPDATED):
            self.emit(event, address)

    def cancel(self, address: str) -> None:
        for debouncer in self._debouncers.values():
            debouncer.cancel(address)

    def cancel_all(self) -> None:
        for debouncer in self._debouncers.values():
            debouncer.cancel_all()
