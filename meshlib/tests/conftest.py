import pytest
import tempfile

from meshlib.config import SyncSettings
from meshlib.core.account_manager import AccountManager
from meshlib.core.notifier import UiChannel
from meshlib.core.types import KeyPair


def tx_id(n):
    """Deterministic 32-byte hex transaction id"""
    return f"{n:064x}"


def public_key(n):
    return f"{n:0128x}"


def fake_address(pk):
    return f"sm1{pk[-12:]}"


class FakeStream:
    """A live feed handle; tests push items through it."""

    def __init__(self, kind, target, on_item, fail_on_cancel=False):
        self.kind = kind
        self.target = target
        self.on_item = on_item
        self.active = True
        self.fail_on_cancel = fail_on_cancel

    def push(self, item):
        self.on_item(item)

    def cancel(self):
        self.active = False
        if self.fail_on_cancel:
            raise RuntimeError("stream already closed")


class FakeLedger:
    """In-memory mesh, global-state and transaction services."""

    def __init__(self):
        self.mesh_txs = {}
        self.accounts = {}
        self.rewards = {}
        self.failures = {}
        self.calls = []
        self.streams = []
        self.submitted = []
        self.current_layer = 42
        self.genesis_id = bytes(20)
        self.submit_response = {
            "error": None,
            "txstate": {"id": {"id": tx_id(999)}, "state": "TRANSACTION_STATE_MEMPOOL"},
        }
        self.fail_on_cancel = False

    def _maybe_fail(self, key):
        remaining = self.failures.get(key, 0)
        if remaining:
            self.failures[key] = remaining - 1
            return {"data": [], "total_results": 0, "error": "unavailable"}
        return None

    def _page(self, items, offset, size=100):
        return {"data": items[offset:offset + size], "total_results": len(items), "error": None}

    async def request_mesh_transactions(self, account_id, offset):
        self.calls.append(("mesh", account_id, offset))
        return self._maybe_fail(("mesh", offset)) or self._page(self.mesh_txs.get(account_id, []), offset)

    async def send_account_data_query(self, filter, offset):
        account_id = filter["account_id"]
        flags = filter["account_data_flags"]
        self.calls.append(("account", account_id, flags, offset))
        failed = self._maybe_fail(("account", flags, offset))
        if failed:
            return failed
        if flags == 2:
            return self._page(self.rewards.get(account_id, []), offset)
        account = self.accounts.get(account_id)
        return self._page([account] if account else [], 0)

    async def get_current_layer(self):
        return {"current_layer": self.current_layer}

    async def get_genesis_id(self):
        return self.genesis_id

    async def submit_transaction(self, signed):
        self.submitted.append(signed)
        return self.submit_response

    def _stream(self, kind, target, on_item):
        stream = FakeStream(kind, target, on_item, self.fail_on_cancel)
        self.streams.append(stream)
        return stream.cancel

    def listen_mesh_transactions(self, account_id, on_item):
        return self._stream("mesh", account_id, on_item)

    def activate_account_data_stream(self, account_id, flag, on_item):
        return self._stream("account", account_id, on_item)

    def listen_rewards_by_coinbase(self, account_id, on_item):
        return self._stream("rewards", account_id, on_item)

    def watch_transactions_by_address(self, account_id, on_item):
        return self._stream("watch", account_id, on_item)

    def activate_tx_stream(self, on_item, tx_ids):
        return self._stream("tx-state", list(tx_ids), on_item)

    def active_streams(self, kind=None):
        return [s for s in self.streams if s.active and (kind is None or s.kind == kind)]


class FakeSigner:
    def __init__(self):
        self.signed = []

    def sign(self, digest, secret_key, public_key=None):
        self.signed.append((digest, secret_key))
        return b"\x5a" * 64


class RecordingChannel(UiChannel):
    def __init__(self):
        self.events = []

    def send(self, event, payload):
        self.events.append((event, payload))

    def for_account(self, address):
        return [(e, p) for e, p in self.events if address in (p.get("account_id"), p.get("public_key"))]


@pytest.fixture
def temp_dir():
    """Create temporary directory for test data"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def settings():
    """Settings with delays short enough for tests"""
    return SyncSettings(retry_delay=0, ui_debounce=0.01, resubscribe_debounce=0.01, poll_interval=0.01)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def keypair():
    return KeyPair(public_key=public_key(1), secret_key="11" * 32)


@pytest.fixture
def make_manager(ledger, channel, settings):
    """Factory so each manager is built inside the test's event loop run"""
    def factory(database=None, genesis_id="00" * 20):
        return AccountManager(
            ledger, ledger, ledger,
            genesis_id=genesis_id,
            ui_channel=channel,
            database=database,
            settings=settings,
            signer=FakeSigner(),
            address_deriver=fake_address,
        )
    return factory
