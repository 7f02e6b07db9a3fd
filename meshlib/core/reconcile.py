"""
Reconciliation Engine

Merges incoming transaction and reward records into an account's store.
Statuses only move up in rank and stop at the first terminal one, layers only
grow, unset fields never erase stored ones and receipts merge field by field.
Updates that agree on their scalar fields converge in any delivery order; two
different terminal results keep whichever arrived first.
"""

from dataclasses import fields, replace
from typing import Callable, Dict, Optional

from meshlib.core.account_state import AccountStateStore
from meshlib.core.transformers import add_receipt, reward_from_raw, to_tx_status, tx_from_raw
from meshlib.core.types import Tx, TxReceipt, TxStatus
from meshlib.utils.console import print_debug

_MERGED_SEPARATELY = {"status", "layer", "receipt"}


def merge_status(existing: Optional[TxStatus], incoming: Optional[TxStatus]) -> Optional[TxStatus]:
    if existing is None:
        return incoming
    if incoming is None or existing.is_terminal:
        return existing
    return max(existing, incoming)


def merge_layer(existing: Optional[int], incoming: Optional[int]) -> Optional[int]:
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return max(existing, incoming)


def merge_receipt(existing: Optional[TxReceipt], incoming: Optional[TxReceipt]) -> Optional[TxReceipt]:
    if incoming is None:
        return replace(existing) if existing else None
    if existing is None:
        return replace(incoming)
    merged = replace(existing)
    for f in fields(TxReceipt):
        value = getattr(incoming, f.name)
        if value is not None:
            setattr(merged, f.name, value)
    return merged


def merge_tx(existing: Optional[Tx], incoming: Tx) -> Tx:
    """Produce the next record for a transaction id."""
    if existing is None:
        return replace(incoming)

    merged = replace(existing)
    for f in fields(Tx):
        if f.name in _MERGED_SEPARATELY:
            continue
        value = getattr(incoming, f.name)
        if value is not None:
            setattr(merged, f.name, value)
    merged.status = merge_status(existing.status, incoming.status)
    merged.layer = merge_layer(existing.layer, incoming.layer)
    merged.receipt = merge_receipt(existing.receipt, incoming.receipt)
    return merged


class Reconciler:
    """
    Applies merged records to the owning account's store.

    ``get_store`` resolves the live store for an address; a caller holding an
    older store (e.g. a backfill started before the account set was replaced)
    passes it as ``store`` and its results are dropped once it is superseded.
    """

    def __init__(self, get_store: Callable[[str], Optional[AccountStateStore]],
                 on_txs_changed: Optional[Callable[[str], None]] = None,
                 on_rewards_changed: Optional[Callable[[str], None]] = None,
                 on_new_tx: Optional[Callable[[str], None]] = None):
        self.get_store = get_store
        self.on_txs_changed = on_txs_changed
        self.on_rewards_changed = on_rewards_changed
        self.on_new_tx = on_new_tx

    def _live_store(self, address: str, store: Optional[AccountStateStore]) -> Optional[AccountStateStore]:
        current = self.get_store(address)
        if current is None or (store is not None and store is not current):
            return None
        return current

    async def upsert_transaction(self, address: str, tx: Tx,
                                 store: Optional[AccountStateStore] = None) -> Optional[Tx]:
        store = self._live_store(address, store)
        if store is None:
            print_debug(f"🗑️  Dropping tx update for untracked account {address}")
            return None
        if not tx.id:
            print_debug(f"🗑️  Dropping tx update without id for {address}")
            return None

        existing = store.get_tx_by_id(tx.id)
        merged = merge_tx(existing, tx)
        await store.store_transaction(merged)

        if self._live_store(address, store) is None:
            return merged
        if self.on_txs_changed:
            self.on_txs_changed(address)
        if existing is None and self.on_new_tx:
            self.on_new_tx(address)
        return merged

    async def upsert_from_mesh(self, address: str, item: Optional[Dict],
                               store: Optional[AccountStateStore] = None) -> Optional[Tx]:
        """Mesh pushes and backfill pages: {"transaction": {...}, "layer_id": n}."""
        if not item or not item.get("transaction") or item.get("layer_id") is None:
            print_debug(f"🗑️  Dropping mesh item without transaction/layer for {address}")
            return None
        tx = tx_from_raw(item["transaction"], TxStatus.PENDING)
        if tx is None:
            print_debug(f"🗑️  Dropping mesh item without tx id for {address}")
            return None
        layer = item["layer_id"]
        tx.layer = int(layer.get("number", 0) if isinstance(layer, dict) else layer) or tx.layer
        return await self.upsert_transaction(address, tx, store)

    async def upsert_from_tx_state(self, address: str, item: Optional[Dict],
                                   store: Optional[AccountStateStore] = None) -> Optional[Tx]:
        """Status stream items: {"transaction": {...}, "transaction_state": {"state": s}}."""
        if not item:
            return None
        state = (item.get("transaction_state") or {}).get("state")
        status = to_tx_status(state)
        tx = tx_from_raw(item.get("transaction"), status)
        if tx is None or status is None:
            print_debug(f"🗑️  Dropping tx state item without transaction/state for {address}")
            return None
        return await self.upsert_transaction(address, tx, store)

    async def upsert_from_watch(self, address: str, item: Optional[Dict],
                                store: Optional[AccountStateStore] = None) -> Optional[Tx]:
        """Address watch items: {"tx": {...}, "status": result, "layer": n}."""
        if not item or not item.get("tx"):
            return None
        tx = tx_from_raw(item["tx"], to_tx_status("processed", item.get("status")))
        if tx is None:
            print_debug(f"🗑️  Dropping watch item without tx id for {address}")
            return None
        if item.get("layer") is not None:
            tx.layer = int(item["layer"])
        add_receipt(tx, item.get("receipt"))
        return await self.upsert_transaction(address, tx, store)

    async def add_reward(self, address: str, raw: Optional[Dict],
                         store: Optional[AccountStateStore] = None) -> bool:
        store = self._live_store(address, store)
        if store is None:
            return False
        reward = reward_from_raw(raw)
        if reward is None:
            print_debug(f"🗑️  Dropping incomplete reward for {address}: {raw}")
            return False
        added = await store.store_reward(reward)
        if added and self._live_store(address, store) is not None and self.on_rewards_changed:
            self.on_rewards_changed(address)
        return added
