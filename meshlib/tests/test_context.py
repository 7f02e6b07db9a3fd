import asyncio
import json
import os

import pytest

from meshlib import __version__
from meshlib.cli import load_keypairs, main
from meshlib.core.context import SyncContext
from meshlib.core.crypto import derive_address
from meshlib.core.errors import MeshlibError
from meshlib.utils.validation import is_valid_public_key


class TestSyncContext:
    def test_lifecycle(self, make_manager, keypair, ledger):
        async def scenario():
            context = SyncContext(make_manager)
            assert not context.active
            first = await context.create()
            await first.add_account(keypair)

            with pytest.raises(MeshlibError):
                await context.create()

            second = await context.replace()
            assert second is not first
            assert first.closed
            assert context.manager is second

            await context.dispose()
            assert second.closed
            assert not context.active
            with pytest.raises(MeshlibError):
                context.manager

        asyncio.run(scenario())
        assert ledger.active_streams() == []

    def test_async_context_manager(self, make_manager):
        async def scenario():
            async with SyncContext(make_manager) as manager:
                assert not manager.closed
            return manager

        assert asyncio.run(scenario()).closed


class TestCli:
    @pytest.fixture(autouse=True)
    def isolated_env(self, monkeypatch):
        # apply_profile writes defaults into the process environment
        monkeypatch.setattr(os, "environ", dict(os.environ))

    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 0
        assert "meshlib-sync --help" in capsys.readouterr().out

    def test_keygen_output_loads_as_keys_file(self, capsys, temp_dir):
        assert main(["keygen", "--count", "2"]) == 0
        entries = json.loads(capsys.readouterr().out)

        assert len(entries) == 2
        assert entries[0]["public_key"] != entries[1]["public_key"]
        for entry in entries:
            assert is_valid_public_key(entry["public_key"])
            assert entry["address"] == derive_address(entry["public_key"])

        keys_path = os.path.join(temp_dir, "keys.json")
        with open(keys_path, "w", encoding="utf-8") as fh:
            json.dump(entries, fh)
        keypairs = load_keypairs(keys_path)
        assert [k.secret_key for k in keypairs] == [e["secret_key"] for e in entries]
