"""
Account State Store

Holds the balance/nonce snapshots, transaction ledger and reward ledger of a
single account. Every mutation is written through to durable storage before
the call returns; a failed write is reported and the in-memory update stands.
"""

import asyncio
from typing import Dict, List, Optional

from meshlib.core.errors import StorageError
from meshlib.core.types import AccountBalance, AccountState, Reward, Tx
from meshlib.storage.database import AccountDatabase
from meshlib.utils.console import log_error, print_debug


class AccountStateStore:
    """State for one tracked account"""

    def __init__(self, address: str, genesis_id: str = "", database: Optional[AccountDatabase] = None):
        self.address = address
        self.genesis_id = genesis_id
        self.database = database
        self._state = AccountState(address=address)
        self._txs: Dict[str, Tx] = {}
        self._rewards: List[Reward] = []
        self._reward_keys = set()

    async def load(self) -> None:
        """Restore the last committed state. Raises StorageError."""
        if not self.database:
            return
        state = await asyncio.to_thread(self.database.load_state, self.genesis_id, self.address)
        raw_txs = await asyncio.to_thread(self.database.load_transactions, self.genesis_id, self.address)
        raw_rewards = await asyncio.to_thread(self.database.load_rewards, self.genesis_id, self.address)

        if state:
            self._state = AccountState(
                address=self.address,
                current=AccountBalance(**_balance_fields(state.get("current"))),
                projected=AccountBalance(**_balance_fields(state.get("projected"))),
            )
        for raw in raw_txs:
            tx = Tx.from_dict(raw)
            if tx.id:
                self._txs[tx.id] = tx
        for raw in raw_rewards:
            self._append_reward(Reward.from_dict(raw))

        print_debug(
            f"📂 Loaded {self.address}: {len(self._txs)} txs, {len(self._rewards)} rewards"
        )

    async def _persist(self, method: str, *args) -> bool:
        if not self.database:
            return True
        try:
            func = getattr(self.database, method)
            await asyncio.to_thread(func, self.genesis_id, self.address, *args)
            return True
        except StorageError as e:
            log_error(f"AccountStateStore.{method} ({self.address})", e)
            return False

    # =========================================================================
    # Balance / nonce
    # =========================================================================

    def get_state(self) -> AccountState:
        return self._state

    async def store_state(self, current: AccountBalance, projected: AccountBalance) -> bool:
        self._state = AccountState(address=self.address, current=current, projected=projected)
        return await self._persist(
            "save_state",
            _balance_fields(current.__dict__),
            _balance_fields(projected.__dict__),
        )

    # =========================================================================
    # Transactions
    # =========================================================================

    def get_tx_by_id(self, tx_id: str) -> Optional[Tx]:
        return self._txs.get(tx_id)

    async def store_transaction(self, tx: Tx) -> bool:
        """Insert or replace a transaction record keyed by its id."""
        if not tx.id:
            raise ValueError("Transaction record has no id")
        self._txs[tx.id] = tx
        return await self._persist(
            "save_transaction",
            tx.to_dict(),
        )

    def get_txs(self) -> Dict[str, Tx]:
        return dict(self._txs)

    def last_synced_tx_layer(self) -> int:
        layers = [tx.layer for tx in self._txs.values() if tx.layer is not None]
        return max(layers, default=0)

    # =========================================================================
    # Rewards
    # =========================================================================

    def _append_reward(self, reward: Reward) -> bool:
        if reward.key in self._reward_keys:
            return False
        self._reward_keys.add(reward.key)
        self._rewards.append(reward)
        return True

    async def store_reward(self, reward: Reward) -> bool:
        """Append a reward; returns False when the layer was already recorded."""
        if not self._append_reward(reward):
            return False
        await self._persist(
            "save_reward",
            {
                "layer": reward.layer,
                "amount": reward.amount,
                "layer_reward": reward.layer_reward,
                "coinbase": reward.coinbase,
            },
        )
        return True

    def get_rewards(self) -> List[Reward]:
        return list(self._rewards)

    def last_synced_rewards_layer(self) -> int:
        return max((r.layer for r in self._rewards), default=0)


def _balance_fields(data: Optional[Dict]) -> Dict:
    data = data or {}
    return {
        "counter": int(data.get("counter", 0) or 0),
        "balance": int(data.get("balance", 0) or 0),
    }
