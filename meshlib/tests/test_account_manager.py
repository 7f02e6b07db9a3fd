import asyncio
import os

from conftest import fake_address, public_key, tx_id

from meshlib.core.notifier import ACCOUNT_UPDATED, REWARDS_UPDATED, TXS_UPDATED
from meshlib.core.types import KeyPair, SpendRequest, Tx, TxStatus
from meshlib.storage.database import AccountDatabase


def mesh_item(n, layer):
    return {"mesh_transaction": {"transaction": {"id": {"id": tx_id(n)}}, "layer_id": {"number": layer}}}


def reward_item(layer, amount=100):
    return {"reward": {"layer": layer, "total": amount, "layer_reward": amount, "coinbase": "sm1coinbase"}}


class TestAddAccount:
    def test_cached_state_emitted_before_network(self, make_manager, channel, keypair, ledger):
        address = fake_address(keypair.public_key)

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            events = [e for e, _ in channel.for_account(address)]
            await manager.close()
            return events

        events = asyncio.run(scenario())
        assert events[:3] == [ACCOUNT_UPDATED, TXS_UPDATED, REWARDS_UPDATED]

    def test_backfill_and_account_data(self, make_manager, channel, keypair, ledger):
        address = fake_address(keypair.public_key)
        ledger.mesh_txs[address] = [mesh_item(n, 10 + n) for n in range(150)]
        ledger.accounts[address] = {"account_wrapper": {
            "state_current": {"counter": {"value": 3}, "balance": {"value": 1000}},
            "state_projected": {"counter": {"value": 4}, "balance": {"value": 900}},
        }}
        ledger.rewards[address] = [reward_item(5), reward_item(6)]

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            await manager.wait_idle()
            await asyncio.sleep(0.05)
            store = manager.get_store(address)
            result = (store.get_txs(), store.get_state(), store.get_rewards())
            await manager.close()
            return result

        txs, state, rewards = asyncio.run(scenario())
        assert len(txs) == 150
        assert all(tx.status == TxStatus.PENDING for tx in txs.values())
        assert state.current.balance == 1000
        assert state.projected.counter == 4
        assert [r.layer for r in rewards] == [5, 6]

        last_txs = [p for e, p in channel.for_account(address) if e == TXS_UPDATED][-1]
        assert len(last_txs["txs"]) == 150
        last_account = [p for e, p in channel.for_account(address) if e == ACCOUNT_UPDATED][-1]
        assert last_account["account"]["current"]["balance"] == 1000

    def test_live_items_are_reconciled(self, make_manager, keypair, ledger):
        address = fake_address(keypair.public_key)

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            await manager.wait_idle()
            ledger.active_streams("mesh")[0].push({"transaction": {"id": tx_id(1)}, "layer_id": 4})
            await asyncio.sleep(0.05)
            ledger.active_streams("watch")[0].push({"tx": {"id": tx_id(1)}, "status": "success", "layer": 5})
            await asyncio.sleep(0.05)
            tx = manager.get_store(address).get_tx_by_id(tx_id(1))
            tx_streams = ledger.active_streams("tx-state")
            await manager.close()
            return tx, tx_streams

        tx, tx_streams = asyncio.run(scenario())
        assert tx.status == TxStatus.SUCCESS
        assert tx.layer == 5
        assert len(tx_streams) == 1
        assert tx_streams[0].target == [bytes.fromhex(tx_id(1))]

    def test_replacing_keypair_keeps_single_entry(self, make_manager):
        first = KeyPair(public_key=public_key(1), secret_key="aa")
        second = KeyPair(public_key=public_key(2), secret_key="bb")
        updated = KeyPair(public_key=public_key(1), secret_key="cc")

        async def scenario():
            manager = make_manager()
            await manager.add_account(first)
            await manager.add_account(second)
            await manager.add_account(updated)
            keychain = list(manager.keychain)
            await manager.close()
            return keychain

        keychain = asyncio.run(scenario())
        assert keychain == [second, updated]

    def test_cached_records_loaded_from_database(self, make_manager, keypair, channel, temp_dir):
        address = fake_address(keypair.public_key)
        database = AccountDatabase(os.path.join(temp_dir, "accounts.db"))

        async def first_session():
            manager = make_manager(database=database)
            await manager.add_account(keypair)
            await manager.update_tx_note(address, tx_id(1), "coffee")
            await manager.close()

        async def second_session():
            channel.events.clear()
            manager = make_manager(database=database)
            await manager.add_account(keypair)
            first_txs = channel.for_account(address)[1][1]
            await manager.close()
            return first_txs

        asyncio.run(first_session())
        payload = asyncio.run(second_session())
        assert payload["txs"] == {tx_id(1): {"id": tx_id(1), "note": "coffee"}}


class TestSetAccounts:
    def test_removed_account_gets_no_more_notifications(self, make_manager, channel, keypair, ledger):
        address = fake_address(keypair.public_key)
        ledger.mesh_txs[address] = [mesh_item(n, n + 1) for n in range(20)]

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            mesh_stream = ledger.active_streams("mesh")[0]
            count = len(channel.for_account(address))
            await manager.set_accounts([])
            mesh_stream.push({"transaction": {"id": tx_id(77)}, "layer_id": 3})
            await manager.wait_idle()
            await asyncio.sleep(0.05)
            after = len(channel.for_account(address))
            streams = ledger.active_streams()
            await manager.close()
            return count, after, streams, manager.get_store(address)

        count, after, streams, store = asyncio.run(scenario())
        assert count == 3
        assert after == count
        assert streams == []
        assert store is None

    def test_set_accounts_replaces_the_set(self, make_manager, ledger):
        pairs = [KeyPair(public_key(n), "aa") for n in (1, 2, 3)]

        async def scenario():
            manager = make_manager()
            await manager.set_accounts(pairs[:2])
            await manager.set_accounts(pairs[1:])
            result = (manager.addresses, list(manager.keychain), len(ledger.active_streams("mesh")))
            await manager.close()
            return result

        addresses, keychain, mesh_streams = asyncio.run(scenario())
        assert addresses == [fake_address(p.public_key) for p in pairs[1:]]
        assert keychain == pairs[1:]
        assert mesh_streams == 2

    def test_failing_account_does_not_block_others(self, make_manager):
        good = KeyPair(public_key(5), "aa")
        bad = KeyPair(public_key(6), "bb")

        async def scenario():
            manager = make_manager()
            derive = manager.derive_address

            def picky(pk):
                if pk == bad.public_key:
                    raise ValueError("bad key")
                return derive(pk)

            manager.derive_address = picky
            added = await manager.set_accounts([bad, good])
            await manager.close()
            return added

        assert asyncio.run(scenario()) == [fake_address(good.public_key)]


class TestPublish:
    def test_self_spawn_creates_pending_tx(self, make_manager, keypair, ledger, channel):
        address = fake_address(keypair.public_key)

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            result = await manager.publish_self_spawn(fee=1, account_index=0)
            stored = manager.get_store(address).get_tx_by_id(tx_id(999))
            await manager.close()
            return result, stored

        result, stored = asyncio.run(scenario())
        assert result["error"] is None
        tx = result["tx"]
        assert tx.id == tx_id(999)
        assert tx.status == TxStatus.PENDING
        assert tx.layer == 42
        assert tx.principal == address
        assert tx.gas.fee == 500
        assert tx.meta.method_name == "Spawn"
        assert stored.status == TxStatus.PENDING
        assert len(ledger.submitted) == 1
        assert ledger.submitted[0].endswith(b"\x5a" * 64)

    def test_missing_tx_id_returns_error(self, make_manager, keypair, ledger):
        address = fake_address(keypair.public_key)
        ledger.submit_response = {"error": None, "txstate": {}}

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            await manager.wait_idle()
            before = manager.get_store(address).get_txs()
            result = await manager.publish_self_spawn(fee=1, account_index=0)
            after = manager.get_store(address).get_txs()
            await manager.close()
            return result, before, after

        result, before, after = asyncio.run(scenario())
        assert result["error"] is not None
        assert result["tx"] is None
        assert before == after == {}

    def test_remote_rejection_returns_error(self, make_manager, keypair, ledger):
        ledger.submit_response = {"error": "insufficient funds", "txstate": None}

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            result = await manager.publish_self_spawn(fee=1, account_index=0)
            await manager.close()
            return result

        result = asyncio.run(scenario())
        assert "insufficient funds" in str(result["error"])
        assert result["tx"] is None

    def test_spend_with_invalid_receiver_is_caught(self, make_manager, keypair, ledger):
        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            result = await manager.publish_spend_tx(
                SpendRequest(receiver="not-an-address", amount=10, fee=1), account_index=0)
            await manager.close()
            return result

        result = asyncio.run(scenario())
        assert isinstance(result["error"], ValueError)
        assert result["tx"] is None
        assert ledger.submitted == []

    def test_unknown_account_index(self, make_manager):
        async def scenario():
            manager = make_manager()
            result = await manager.publish_self_spawn(fee=1, account_index=3)
            await manager.close()
            return result

        result = asyncio.run(scenario())
        assert isinstance(result["error"], IndexError)


class TestTxNote:
    def test_note_on_unknown_tx(self, make_manager, keypair):
        address = fake_address(keypair.public_key)

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            tx = await manager.update_tx_note(address, tx_id(5), "<b>rent</b> \u2615")
            await manager.close()
            return tx

        tx = asyncio.run(scenario())
        assert tx.to_dict() == {"id": tx_id(5), "note": "<b>rent</b> \u2615"}

    def test_note_keeps_existing_fields(self, make_manager, keypair):
        address = fake_address(keypair.public_key)

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            await manager.reconciler.upsert_transaction(
                address, Tx(id=tx_id(5), status=TxStatus.PROCESSED, layer=9))
            tx = await manager.update_tx_note(address, tx_id(5), "<b>rent</b>")
            await manager.close()
            return tx

        tx = asyncio.run(scenario())
        assert tx.status == TxStatus.PROCESSED
        assert tx.layer == 9
        assert tx.note == "<b>rent</b>"

    def test_note_on_untracked_account(self, make_manager):
        async def scenario():
            manager = make_manager()
            return await manager.update_tx_note("sm1nobody", tx_id(1), "x")

        assert asyncio.run(scenario()) is None


class TestRewards:
    def test_retrieve_new_rewards_appends_unseen(self, make_manager, keypair, ledger):
        address = fake_address(keypair.public_key)
        ledger.rewards[address] = [reward_item(1)]

        async def scenario():
            manager = make_manager()
            await manager.add_account(keypair)
            await manager.wait_idle()
            ledger.rewards[address] = [reward_item(1), reward_item(8, 300)]
            rewards = await manager.retrieve_new_rewards(address)
            await manager.close()
            return rewards

        rewards = asyncio.run(scenario())
        assert [(r.layer, r.amount) for r in rewards] == [(1, 100), (8, 300)]
