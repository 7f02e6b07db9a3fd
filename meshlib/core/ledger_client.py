"""
HTTP adapter for a node's JSON API gateway.

Implements the mesh, global-state and transaction service calls the
AccountManager expects. Queries run the blocking requests calls on a worker
thread; streams are emulated by polling on the event loop and return a
cancel callable like a real stream subscription.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import requests

from meshlib.core.transformers import to_hex
from meshlib.core.types import AccountDataFlag
from meshlib.utils.console import print_debug, print_info

OnItem = Callable[[Optional[Dict]], None]

_EMPTY = {"data": [], "total_results": 0}


class LedgerHttpClient:
    """Mesh, global-state and transaction services over one endpoint"""

    def __init__(self, endpoint_url: str = "http://localhost:9093",
                 timeout: float = 10.0,
                 poll_interval: float = 5.0,
                 page_size: int = 100):
        self.endpoint_url = endpoint_url.rstrip('/')
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.page_size = page_size
        self._genesis_id: Optional[bytes] = None
        self._pollers: Set[asyncio.Task] = set()

    # =========================================================================
    # Transport
    # =========================================================================

    def _post_sync(self, path: str, body: Dict) -> Dict[str, Any]:
        try:
            response = requests.post(f'{self.endpoint_url}{path}', json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            return {"error": e}
        if response.status_code != 200:
            return {"error": f"HTTP {response.status_code}: {response.text[:200]}"}
        try:
            return response.json() or {}
        except ValueError as e:
            return {"error": e}

    async def _post(self, path: str, body: Dict) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post_sync, path, body)

    @staticmethod
    def _page(response: Dict, items_key: str) -> Dict[str, Any]:
        if response.get("error"):
            return dict(_EMPTY, error=response["error"])
        return {
            "data": response.get(items_key) or [],
            "total_results": int(response.get("total_results") or 0),
            "error": None,
        }

    # =========================================================================
    # Mesh service
    # =========================================================================

    async def request_mesh_transactions(self, account_id: str, offset: int) -> Dict[str, Any]:
        response = await self._post('/v1/mesh/accountmeshdataquery', {
            "filter": {
                "account_id": {"address": account_id},
                "account_mesh_data_flags": 1,
            },
            "max_results": self.page_size,
            "offset": offset,
        })
        return self._page(response, "data")

    async def get_current_layer(self) -> Dict[str, Any]:
        response = await self._post('/v1/mesh/currentlayer', {})
        layer = response.get("layernum") or {}
        return {"current_layer": int(layer.get("number", 0) or 0)}

    async def get_genesis_id(self) -> bytes:
        if self._genesis_id is None:
            response = await self._post('/v1/mesh/genesisid', {})
            if response.get("error"):
                raise ConnectionError(f"Genesis id unavailable: {response['error']}")
            self._genesis_id = bytes.fromhex(to_hex(response.get("genesis_id")) or "")
        return self._genesis_id

    def listen_mesh_transactions(self, account_id: str, on_item: OnItem) -> Callable[[], None]:
        def unwrap(item):
            return item.get("mesh_transaction", item) if isinstance(item, dict) else item

        return self._tail(
            f"mesh {account_id}",
            lambda offset: self.request_mesh_transactions(account_id, offset),
            lambda item: on_item(unwrap(item)),
        )

    # =========================================================================
    # Global state service
    # =========================================================================

    async def send_account_data_query(self, filter: Dict, offset: int) -> Dict[str, Any]:
        response = await self._post('/v1/globalstate/accountdataquery', {
            "filter": {
                "account_id": {"address": filter["account_id"]},
                "account_data_flags": int(filter.get("account_data_flags", AccountDataFlag.ACCOUNT)),
            },
            "max_results": self.page_size,
            "offset": offset,
        })
        return self._page(response, "account_item")

    def activate_account_data_stream(self, account_id: str, flag: int, on_item: OnItem) -> Callable[[], None]:
        last = {}

        async def poll():
            response = await self.send_account_data_query(
                {"account_id": account_id, "account_data_flags": flag}, 0)
            for item in response["data"]:
                account = item.get("account_wrapper") if isinstance(item, dict) else None
                if account and account != last.get("account"):
                    last["account"] = account
                    on_item(account)

        return self._start_poller(f"account {account_id}", poll)

    def listen_rewards_by_coinbase(self, account_id: str, on_item: OnItem) -> Callable[[], None]:
        def deliver(item):
            if isinstance(item, dict) and "reward" in item:
                on_item(item["reward"])

        return self._tail(
            f"rewards {account_id}",
            lambda offset: self.send_account_data_query(
                {"account_id": account_id, "account_data_flags": AccountDataFlag.REWARD}, offset),
            deliver,
        )

    # =========================================================================
    # Transaction service
    # =========================================================================

    async def submit_transaction(self, signed: bytes) -> Dict[str, Any]:
        response = await self._post('/v1/transaction/submittransaction', {
            "transaction": bytes(signed).hex(),
        })
        error = response.get("error")
        status = response.get("status") or {}
        if not error and status.get("code"):
            error = status.get("message") or f"status code {status['code']}"
        return {"error": error, "txstate": response.get("txstate")}

    async def request_tx_states(self, tx_ids: Iterable[bytes]) -> List[Dict]:
        response = await self._post('/v1/transaction/transactionsstate', {
            "transaction_id": [{"id": bytes(tx_id).hex()} for tx_id in tx_ids],
            "include_transactions": True,
        })
        if response.get("error"):
            return []
        states = response.get("transactions_state") or []
        txs = {to_hex(tx.get("id")): tx for tx in response.get("transactions") or []}
        return [
            {"transaction": txs.get(to_hex(state.get("id"))), "transaction_state": state}
            for state in states
        ]

    def activate_tx_stream(self, on_item: OnItem, tx_ids: List[bytes]) -> Callable[[], None]:
        seen: Dict[str, Any] = {}

        async def poll():
            for item in await self.request_tx_states(tx_ids):
                state = item["transaction_state"]
                tx_id = to_hex(state.get("id"))
                if item["transaction"] and seen.get(tx_id) != state.get("state"):
                    seen[tx_id] = state.get("state")
                    on_item(item)

        return self._start_poller(f"tx states ({len(tx_ids)})", poll)

    async def request_transactions_by_address(self, account_id: str, offset: int) -> Dict[str, Any]:
        response = await self._post('/v1/transaction/transactionsbyaddress', {
            "address": account_id,
            "max_results": self.page_size,
            "offset": offset,
        })
        return self._page(response, "data")

    def watch_transactions_by_address(self, account_id: str, on_item: OnItem) -> Callable[[], None]:
        return self._tail(
            f"watch {account_id}",
            lambda offset: self.request_transactions_by_address(account_id, offset),
            on_item,
        )

    # =========================================================================
    # Polling
    # =========================================================================

    def _start_poller(self, name: str, poll) -> Callable[[], None]:
        loop = asyncio.get_running_loop()

        async def run():
            while True:
                try:
                    await poll()
                except Exception as e:
                    print_debug(f"📡 {name} poll failed: {e!r}")
                await asyncio.sleep(self.poll_interval)

        task = loop.create_task(run())
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)
        print_debug(f"📡 Polling {name} every {self.poll_interval}s")
        return task.cancel

    def _tail(self, name: str, query_at, deliver: OnItem) -> Callable[[], None]:
        """Deliver records appended after activation; history is left to backfill."""
        cursor = {"offset": None}

        async def poll():
            if cursor["offset"] is None:
                first = await query_at(0)
                if not first.get("error"):
                    cursor["offset"] = first["total_results"]
                return
            response = await query_at(cursor["offset"])
            if response.get("error"):
                return
            for item in response["data"]:
                deliver(item)
            cursor["offset"] += len(response["data"])

        return self._start_poller(name, poll)

    def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            print_info(f"🔌 Stopped {len(self._pollers)} pollers for {self.endpoint_url}")
        self._pollers.clear()
