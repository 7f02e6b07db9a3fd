"""
Subscription Manager

Owns the live feeds of every tracked account. Each account gets one handle
per stream kind; adding a handle for a kind that is already live cancels the
old one first, so two feeds of the same kind never coexist.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from meshlib.core.debounce import Debouncer
from meshlib.core.types import AccountDataFlag
from meshlib.utils.console import log_error, print_debug
from meshlib.utils.validation import is_valid_tx_id

MESH_TRANSACTIONS = "mesh-transactions"
TX_BY_ADDRESS = "tx-by-address"
TX_STATE = "tx-state"
ACCOUNT_DATA = "account-data"
REWARDS = "rewards"

ItemHandler = Callable[[Optional[Dict]], Awaitable[object]]


@dataclass
class AccountHandlers:
    """Where an account's stream items go, plus the ids to watch."""
    on_mesh_tx: ItemHandler
    on_watch_tx: ItemHandler
    on_tx_state: ItemHandler
    on_account_data: ItemHandler
    on_reward: ItemHandler
    tx_ids: Callable[[], Iterable[str]]


def _safe_cancel(address: str, kind: str, cancel: Callable[[], None]) -> None:
    try:
        cancel()
    except Exception as e:
        # Already closed or broken handles are fine to drop
        print_debug(f"🔌 Cancel {kind} for {address} ignored: {e!r}")


class AccountSubscriptions:
    """Cancellation handles owned by one account, in subscription order."""

    def __init__(self, address: str, handlers: Optional[AccountHandlers] = None):
        self.address = address
        self.handlers = handlers
        self._handles: Dict[str, Callable[[], None]] = {}
        self.closed = False

    def add(self, kind: str, cancel: Callable[[], None]) -> None:
        if self.closed:
            _safe_cancel(self.address, kind, cancel)
            return
        self.cancel(kind)
        self._handles[kind] = cancel

    def cancel(self, kind: str) -> None:
        cancel = self._handles.pop(kind, None)
        if cancel is not None:
            _safe_cancel(self.address, kind, cancel)

    def kinds(self) -> List[str]:
        return list(self._handles)

    def close(self) -> None:
        for kind in reversed(list(self._handles)):
            self.cancel(kind)
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SubscriptionManager:
    """Live feeds for all tracked accounts."""

    def __init__(self, mesh_service, tx_service, global_state_service, resubscribe_delay: float = 0.1):
        self.mesh_service = mesh_service
        self.tx_service = tx_service
        self.global_state_service = global_state_service
        self._accounts: Dict[str, AccountSubscriptions] = {}
        self._resubscribe = Debouncer(resubscribe_delay, name="tx-resubscribe")
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # =========================================================================
    # Item dispatch
    # =========================================================================

    def _dispatch(self, address: str, kind: str, handler: ItemHandler) -> Callable[[Optional[Dict]], None]:
        """Wrap an async handler as the plain callback a stream expects."""
        loop = self._loop

        def start(item):
            task = loop.create_task(handler(item))
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._task_done(address, kind, t))

        def on_item(item):
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                start(item)
            else:
                loop.call_soon_threadsafe(start, item)

        return on_item

    def _task_done(self, address: str, kind: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_error(f"{kind} handler ({address})", task.exception())

    # =========================================================================
    # Subscribe / cancel
    # =========================================================================

    def subscribe_account(self, address: str, handlers: AccountHandlers) -> AccountSubscriptions:
        """(Re)establish every feed for an account."""
        self._loop = asyncio.get_running_loop()
        self.cancel_account(address)

        subs = AccountSubscriptions(address, handlers)
        try:
            subs.add(MESH_TRANSACTIONS, self.mesh_service.listen_mesh_transactions(
                address, self._dispatch(address, MESH_TRANSACTIONS, handlers.on_mesh_tx)))
            subs.add(ACCOUNT_DATA, self.global_state_service.activate_account_data_stream(
                address, AccountDataFlag.ACCOUNT,
                self._dispatch(address, ACCOUNT_DATA, handlers.on_account_data)))
            subs.add(TX_BY_ADDRESS, self.tx_service.watch_transactions_by_address(
                address, self._dispatch(address, TX_BY_ADDRESS, handlers.on_watch_tx)))
            subs.add(REWARDS, self.global_state_service.listen_rewards_by_coinbase(
                address, self._dispatch(address, REWARDS, handlers.on_reward)))
        except Exception:
            subs.close()
            raise

        self._accounts[address] = subs
        if list(handlers.tx_ids()):
            self.schedule_resubscribe(address)
        return subs

    def resubscribe_transactions(self, address: str) -> None:
        """Replace the tx-state feed with one covering the current id set."""
        subs = self._accounts.get(address)
        if subs is None or subs.closed or subs.handlers is None:
            return
        tx_ids = [bytes.fromhex(tx_id) for tx_id in subs.handlers.tx_ids() if is_valid_tx_id(tx_id)]
        subs.cancel(TX_STATE)
        if not tx_ids:
            return
        subs.add(TX_STATE, self.tx_service.activate_tx_stream(
            self._dispatch(address, TX_STATE, subs.handlers.on_tx_state), tx_ids))
        print_debug(f"📡 Watching {len(tx_ids)} tx states for {address}")

    def schedule_resubscribe(self, address: str) -> None:
        self._resubscribe.schedule(address, lambda: self.resubscribe_transactions(address))

    def get(self, address: str) -> Optional[AccountSubscriptions]:
        return self._accounts.get(address)

    def cancel_account(self, address: str) -> None:
        """Cancel every feed of an account. Safe to call repeatedly."""
        self._resubscribe.cancel(address)
        subs = self._accounts.pop(address, None)
        if subs is not None:
            subs.close()

    def cancel_all(self) -> None:
        for address in list(self._accounts):
            self.cancel_account(address)
        self._resubscribe.cancel_all()

    def close(self) -> None:
        self.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
