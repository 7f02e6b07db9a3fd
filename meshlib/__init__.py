"""
meshlib - Wallet account and transaction synchronization core
"""

from .core.account_manager import AccountManager
from .core.context import SyncContext
from .core.ledger_client import LedgerHttpClient
from .core.types import KeyPair, SpendRequest, Tx, TxStatus
from .storage.database import AccountDatabase

__version__ = "1.0.0"
__all__ = [
    'AccountManager',
    'SyncContext',
    'LedgerHttpClient',
    'AccountDatabase',
    'KeyPair',
    'SpendRequest',
    'Tx',
    'TxStatus',
]
