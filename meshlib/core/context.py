"""Explicit lifetime for the application's AccountManager."""

from typing import Callable, Optional

from meshlib.core.account_manager import AccountManager
from meshlib.core.errors import MeshlibError
from meshlib.utils.console import print_info

ManagerFactory = Callable[[], AccountManager]


class SyncContext:
    """
    Holds at most one AccountManager.

    ``create`` builds it from the factory, ``replace`` disposes the current
    one and builds a fresh one (e.g. after switching networks), ``dispose``
    releases every subscription and timer it owns.
    """

    def __init__(self, factory: ManagerFactory):
        self.factory = factory
        self._manager: Optional[AccountManager] = None

    @property
    def manager(self) -> AccountManager:
        if self._manager is None:
            raise MeshlibError("Account manager is not running")
        return self._manager

    @property
    def active(self) -> bool:
        return self._manager is not None

    async def create(self) -> AccountManager:
        if self._manager is not None:
            raise MeshlibError("Account manager already running; use replace()")
        self._manager = self.factory()
        print_info("🚀 Account manager started")
        return self._manager

    async def replace(self, factory: Optional[ManagerFactory] = None) -> AccountManager:
        await self.dispose()
        if factory is not None:
            self.factory = factory
        return await self.create()

    async def dispose(self) -> None:
        manager, self._manager = self._manager, None
        if manager is not None:
            await manager.close()
            print_info("🛑 Account manager stopped")

    async def __aenter__(self) -> AccountManager:
        return await self.create()

    async def __aexit__(self, exc_type, exc, tb):
        await self.dispose()
        return False
