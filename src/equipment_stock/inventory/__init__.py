"""Stock ledger package.

Modules:
- store: key-value persistence (SQLite / in-memory)
- ledger: items, quantities and the append-only transaction log
- export: CSV stock report
- frontend: Starlette JSON API over the ledger
"""

from .ledger import InventoryLedger
from .store import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

__all__ = [
    "InventoryLedger",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
]
