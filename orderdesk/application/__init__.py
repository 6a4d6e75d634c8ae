# Re-export key classes for convenience, optional.
from .wallet_vault import WalletVault
from .transaction_signer import TransactionSigner
from .order_ledger import LedgerLimits, OrderLedger
from .watcher_registry import WatcherRegistry
from .orchestrator import Orchestrator

__all__ = [
    "WalletVault",
    "TransactionSigner",
    "LedgerLimits",
    "OrderLedger",
    "WatcherRegistry",
    "Orchestrator",
]
