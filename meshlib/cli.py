# meshlib/cli.py
import argparse
import asyncio
import json
import os

from meshlib import __version__
from meshlib.config import SyncSettings, apply_profile
from meshlib.core.account_manager import AccountManager
from meshlib.core.context import SyncContext
from meshlib.core.crypto import derive_address, generate_keypair
from meshlib.core.ledger_client import LedgerHttpClient
from meshlib.core.types import KeyPair
from meshlib.storage.database import AccountDatabase
from meshlib.utils.console import print_error, print_info


def load_keypairs(path):
    """Read [{"public_key": ..., "secret_key": ...}, ...] from a JSON file."""
    with open(path, "r", encoding="utf-8") as fh:
        entries = json.load(fh)
    return [KeyPair(public_key=e["public_key"], secret_key=e["secret_key"]) for e in entries]


def print_event(event, payload):
    print_info(f"🔔 {event}: {json.dumps(payload, default=str)}")


def keygen(count=1):
    """Print fresh key pairs in the format `watch` reads."""
    hrp = SyncSettings.from_env().address_hrp
    entries = []
    for _ in range(count):
        public_key, secret_key = generate_keypair()
        entries.append({
            "public_key": public_key,
            "secret_key": secret_key,
            "address": derive_address(public_key, hrp),
        })
    print(json.dumps(entries, indent=2))
    return entries


async def watch(endpoint, keys_path, genesis_id=None, duration=None):
    settings = SyncSettings.from_env()
    client = LedgerHttpClient(endpoint, settings.http_timeout, settings.poll_interval, settings.batch_size)
    if genesis_id is None:
        genesis_id = (await client.get_genesis_id()).hex()
    database = AccountDatabase(data_dir=settings.data_dir)

    context = SyncContext(lambda: AccountManager(
        client, client, client,
        genesis_id=genesis_id,
        database=database,
        settings=settings,
    ))
    try:
        async with context as manager:
            manager.on_update(print_event)
            await manager.set_accounts(load_keypairs(keys_path))
            if duration:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
    finally:
        client.close()


def main(argv=None):
    """Command line interface for meshlib"""
    parser = argparse.ArgumentParser(description="meshlib account synchronization")
    parser.add_argument('--version', action='store_true', help='Show version')
    parser.add_argument('--profile', default=None, help='Configuration profile (desktop, test)')
    subparsers = parser.add_subparsers(dest='command')

    watch_parser = subparsers.add_parser('watch', help='Track accounts and print updates')
    watch_parser.add_argument('keys', help='JSON file with key pairs')
    watch_parser.add_argument('--endpoint', default=os.getenv('MESHLIB_ENDPOINT', 'http://localhost:9093'))
    watch_parser.add_argument('--genesis-id', default=None, help='Hex genesis id (queried when omitted)')
    watch_parser.add_argument('--duration', type=float, default=None, help='Stop after N seconds')

    keygen_parser = subparsers.add_parser('keygen', help='Generate key pairs for a keys file')
    keygen_parser.add_argument('--count', type=int, default=1, help='Number of key pairs')

    args = parser.parse_args(argv)
    apply_profile(args.profile)

    if args.version:
        print(f"meshlib v{__version__}")
        return 0
    if args.command == 'keygen':
        keygen(max(1, args.count))
        return 0
    if args.command == 'watch':
        try:
            asyncio.run(watch(args.endpoint, args.keys, args.genesis_id, args.duration))
        except KeyboardInterrupt:
            print_info("👋 Stopped")
        except Exception as e:
            print_error(f"❌ watch failed: {e}")
            return 1
        return 0

    print("meshlib - Use 'meshlib-sync --help' for options")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
