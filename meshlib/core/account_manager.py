"""
Account Manager

Single owner of the tracked accounts. For every key pair it keeps an
AccountStateStore, backfills history, holds the live feeds and publishes
UI events; it also signs and submits new transactions and shows them
optimistically until the network reports on them.
"""

import asyncio
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Set

from meshlib.config import SyncSettings
from meshlib.core.account_state import AccountStateStore
from meshlib.core.crypto import derive_address
from meshlib.core.errors import StorageError, SubmissionError
from meshlib.core.notifier import Notifier, UiChannel
from meshlib.core.pagination import FetchResult, fetch_all, fetch_once
from meshlib.core.reconcile import Reconciler
from meshlib.core.subscriptions import AccountHandlers, SubscriptionManager
from meshlib.core.transformers import balances_from_account, reward_from_raw, to_hex, to_tx_status
from meshlib.core.types import AccountDataFlag, KeyPair, Reward, SpendRequest, Tx
from meshlib.storage.database import AccountDatabase
from meshlib.transactions.transactions import SELF_SPAWN, SPEND, TransactionBuilder
from meshlib.utils.console import log_error, print_info, print_success, print_warn


class AccountManager:
    """
    Orchestrates per-account stores, backfill and live subscriptions.

    Collaborators (duck typed, see the services in meshlib.core.ledger_client):
    - mesh_service: request_mesh_transactions, listen_mesh_transactions,
      get_current_layer, get_genesis_id
    - global_state_service: send_account_data_query,
      activate_account_data_stream, listen_rewards_by_coinbase
    - tx_service: submit_transaction, activate_tx_stream,
      watch_transactions_by_address
    """

    def __init__(self, mesh_service, global_state_service, tx_service,
                 genesis_id: str = "",
                 ui_channel: Optional[UiChannel] = None,
                 database: Optional[AccountDatabase] = None,
                 settings: Optional[SyncSettings] = None,
                 signer=None,
                 address_deriver: Optional[Callable[[str], str]] = None):
        self.mesh_service = mesh_service
        self.global_state_service = global_state_service
        self.tx_service = tx_service
        self.genesis_id = genesis_id
        self.database = database
        self.settings = settings or SyncSettings.from_env()
        self.keychain: List[KeyPair] = []
        self._stores: Dict[str, AccountStateStore] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.closed = False

        self.derive_address = address_deriver or (
            lambda public_key: derive_address(public_key, self.settings.address_hrp)
        )
        self.notifier = Notifier(self.get_store, ui_channel, self.settings.ui_debounce)
        self.subscriptions = SubscriptionManager(
            mesh_service, tx_service, global_state_service, self.settings.resubscribe_debounce
        )
        self.reconciler = Reconciler(
            self.get_store,
            on_txs_changed=self.notifier.txs_changed,
            on_rewards_changed=self.notifier.rewards_changed,
            on_new_tx=self.subscriptions.schedule_resubscribe,
        )
        self.builder = TransactionBuilder(signer, self.settings.max_gas, self.settings.address_hrp)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_store(self, address: str) -> Optional[AccountStateStore]:
        return self._stores.get(address)

    @property
    def addresses(self) -> List[str]:
        return list(self._stores)

    def on_update(self, callback: Callable[[str, Dict], None]) -> None:
        """Register callback(event, payload) for UI events"""
        self.notifier.on_update(callback)

    # =========================================================================
    # Background tasks
    # =========================================================================

    def _spawn(self, coro, context: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task):
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                log_error(context, t.exception())

        task.add_done_callback(done)
        return task

    async def wait_idle(self) -> None:
        """Wait for in-flight backfill and follow-up queries."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Account set
    # =========================================================================

    def _replace_keypair(self, keypair: KeyPair) -> None:
        self.keychain = [kp for kp in self.keychain if kp.public_key != keypair.public_key]
        self.keychain.append(keypair)

    async def set_accounts(self, keypairs: List[KeyPair]) -> List[str]:
        """Replace the tracked account set wholesale."""
        self.subscriptions.cancel_all()
        self.notifier.cancel_all()
        self.keychain = []
        self._stores = {}

        added = []
        for keypair in keypairs:
            try:
                added.append(await self.add_account(keypair))
            except Exception as e:
                log_error(f"set_accounts ({keypair.public_key[:16]}...)", e)
        return added

    async def add_account(self, keypair: KeyPair) -> str:
        address = self.derive_address(keypair.public_key)
        self._replace_keypair(keypair)

        store = AccountStateStore(address, self.genesis_id, self.database)
        self._stores[address] = store
        try:
            await store.load()
        except StorageError as e:
            log_error(f"Load account {address}", e)
        if self.get_store(address) is not store:
            return address

        # Cached state goes out before any network round trip
        self.notifier.emit_all(address)
        self._subscribe_account(address, store)
        print_success(f"📱 Tracking account: {address}")
        return address

    def _subscribe_account(self, address: str, store: AccountStateStore) -> None:
        reconciler = self.reconciler
        handlers = AccountHandlers(
            on_mesh_tx=lambda item: reconciler.upsert_from_mesh(address, item, store),
            on_watch_tx=lambda item: reconciler.upsert_from_watch(address, item, store),
            on_tx_state=lambda item: reconciler.upsert_from_tx_state(address, item, store),
            on_account_data=lambda item: self.update_account_data(address, item, store),
            on_reward=lambda item: reconciler.add_reward(address, item, store),
            tx_ids=lambda: list(store.get_txs()),
        )
        self.subscriptions.subscribe_account(address, handlers)

        self._spawn(self.retrieve_historic_tx_data(address, store), f"Backfill txs {address}")
        self._spawn(self.retrieve_account_data(address, store), f"Account data {address}")
        self._spawn(self.retrieve_rewards(address, store), f"Backfill rewards {address}")

    # =========================================================================
    # Historical data
    # =========================================================================

    async def retrieve_historic_tx_data(self, address: str, store: AccountStateStore,
                                        offset: Optional[int] = None) -> FetchResult:
        if offset is None:
            offset = store.last_synced_tx_layer()

        async def on_page(items):
            for item in items:
                if isinstance(item, dict) and "mesh_transaction" in item:
                    item = item["mesh_transaction"]
                await self.reconciler.upsert_from_mesh(address, item, store)

        result = await fetch_all(
            lambda off: self.mesh_service.request_mesh_transactions(address, off),
            start_offset=offset,
            page_size=self.settings.batch_size,
            max_retries=self.settings.max_retries,
            on_page=on_page,
            retry_delay=self.settings.retry_delay,
        )
        if result.error:
            print_warn(f"⚠️  Tx history for {address} incomplete: {result.error}")
        return result

    def _account_query(self, address: str, flag: AccountDataFlag, offset: int):
        return self.global_state_service.send_account_data_query(
            {"account_id": address, "account_data_flags": int(flag)}, offset
        )

    async def retrieve_account_data(self, address: str, store: Optional[AccountStateStore] = None) -> bool:
        store = store or self.get_store(address)
        response = await fetch_once(
            lambda: self._account_query(address, AccountDataFlag.ACCOUNT, 0),
            self.settings.max_retries,
            self.settings.retry_delay,
        )
        if response.get("error"):
            print_warn(f"⚠️  Account data for {address} unavailable: {response['error']}")
            return False
        data = response.get("data") or []
        if not data:
            return False
        return await self.update_account_data(address, data[0], store)

    async def update_account_data(self, address: str, data: Optional[Dict],
                                  store: Optional[AccountStateStore] = None) -> bool:
        live = self.get_store(address)
        if live is None or (store is not None and store is not live) or not data:
            return False
        current, projected = balances_from_account(data)
        await live.store_state(current, projected)
        if self.get_store(address) is live:
            self.notifier.account_changed(address)
        return True

    async def retrieve_rewards(self, address: str, store: AccountStateStore,
                               offset: Optional[int] = None) -> FetchResult:
        if offset is None:
            offset = store.last_synced_rewards_layer()

        async def on_page(items):
            for item in items:
                if isinstance(item, dict) and "reward" in item:
                    item = item["reward"]
                await self.reconciler.add_reward(address, item, store)

        result = await fetch_all(
            lambda off: self._account_query(address, AccountDataFlag.REWARD, off),
            start_offset=offset,
            page_size=self.settings.batch_size,
            max_retries=self.settings.max_retries,
            on_page=on_page,
            retry_delay=self.settings.retry_delay,
        )
        if result.error:
            log_error(f"Can not retrieve rewards for {address}", result.error)
        return result

    async def retrieve_new_rewards(self, address: str) -> List[Reward]:
        """Stored rewards followed by the ones the network has since the last synced layer."""
        store = self.get_store(address)
        old_rewards = store.get_rewards() if store else []
        known = {r.key for r in old_rewards}
        fetched: List[Reward] = []

        def on_page(items):
            for item in items:
                reward = reward_from_raw(item.get("reward", item) if isinstance(item, dict) else None)
                if reward is not None and reward.key not in known:
                    known.add(reward.key)
                    fetched.append(reward)

        await fetch_all(
            lambda off: self._account_query(address, AccountDataFlag.REWARD, off),
            start_offset=store.last_synced_rewards_layer() if store else 0,
            page_size=self.settings.batch_size,
            max_retries=self.settings.max_retries,
            on_page=on_page,
            retry_delay=self.settings.retry_delay,
        )
        return old_rewards + fetched

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish_transaction(self, kind: str, params: Dict) -> Dict:
        """
        Sign and submit a self-spawn or spend transaction.

        params: account_index, fee, plus receiver/amount/note for spends.
        Returns {"error": Exception | None, "tx": Tx | None}.
        """
        try:
            keypair = self.keychain[params["account_index"]]
            address = self.derive_address(keypair.public_key)
            store = self.get_store(address)
            if store is None:
                raise SubmissionError(f"Account {address} is not tracked")

            projected = store.get_state().projected
            if kind == SPEND:
                nonce = projected.counter or 1
            else:
                nonce = projected.counter or 0
            gas_price = int(params["fee"])

            genesis_id = await self.mesh_service.get_genesis_id()
            signed, method, payload = self.builder.build(
                kind, keypair, nonce, gas_price, genesis_id,
                receiver=params.get("receiver"), amount=params.get("amount"),
            )
            response = await self.tx_service.submit_transaction(signed) or {}

            txstate = response.get("txstate") or {}
            tx_id = to_hex(txstate.get("id"))
            error = response.get("error")
            if error or not tx_id:
                if not isinstance(error, Exception):
                    error = SubmissionError(str(error) if error else "Can not retrieve a transaction data")
                print_warn(f"⚠️  Transaction rejected for {address}: {error}")
                return {"error": error, "tx": None}

            current_layer = (await self.mesh_service.get_current_layer() or {}).get("current_layer")
            tx = self.builder.optimistic_tx(
                tx_id,
                to_tx_status(txstate.get("state")),
                address,
                method,
                gas_price,
                payload,
                current_layer,
                note=params.get("note"),
            )
            await self.reconciler.upsert_transaction(address, tx, store)
            print_info(f"📤 Submitted {kind} {tx_id} from {address}")

            # Projected balance/nonce moves right away but is not always pushed
            self._spawn(self.retrieve_account_data(address, store), f"Account data {address}")
            return {"error": None, "tx": tx}
        except Exception as e:
            log_error(f"publish_transaction({kind})", e)
            return {"error": e, "tx": None}

    async def publish_self_spawn(self, fee: int, account_index: int) -> Dict:
        return await self.publish_transaction(SELF_SPAWN, {"fee": fee, "account_index": account_index})

    async def publish_spend_tx(self, request: SpendRequest, account_index: int) -> Dict:
        return await self.publish_transaction(SPEND, {
            "fee": request.fee,
            "account_index": account_index,
            "receiver": request.receiver,
            "amount": request.amount,
            "note": request.note,
        })

    async def update_tx_note(self, address: str, tx_id: str, note: str) -> Optional[Tx]:
        """Attach a local note to a transaction; never touches the network."""
        store = self.get_store(address)
        if store is None:
            return None
        existing = store.get_tx_by_id(tx_id)
        update = replace(existing) if existing else Tx(id=tx_id)
        update.note = note
        return await self.reconciler.upsert_transaction(address, update, store)

    # =========================================================================
    # Disposal
    # =========================================================================

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.subscriptions.close()
        self.notifier.cancel_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._stores = {}
        self.keychain = []
