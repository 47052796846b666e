from __future__ import annotations

import re
import threading
import unicodedata
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from ..domain.errors import (
    DuplicateSerial,
    InsufficientStock,
    InvalidInput,
    ItemNotFound,
    StoreError,
)
from ..domain.models import Item, ItemDraft, Transaction
from ..logging import get_logger
from .constants import (
    ITEMS_KEY,
    TRANSACTION_DECOMMISSION,
    TRANSACTION_IN,
    TRANSACTION_OUT,
    TRANSACTION_TYPES,
    TRANSACTIONS_KEY,
)
from .store import KeyValueStore


LOG = get_logger("stock-ledger")

_QUANTITY_RE = re.compile(r"^\s*\+?(\d+)\s*$")


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return f"id_{uuid.uuid4().hex}"


def parse_quantity(value: Any) -> int:
    """Return a non-negative integer quantity or raise InvalidInput."""
    if isinstance(value, bool):
        raise InvalidInput("Quantity must be a whole number")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        match = _QUANTITY_RE.match(value)
        if not match:
            raise InvalidInput(f"Quantity must be a non-negative whole number, got {value!r}")
        qty = int(match.group(1))
    else:
        raise InvalidInput(f"Quantity must be a non-negative whole number, got {value!r}")
    if qty < 0:
        raise InvalidInput(f"Quantity cannot be negative ({qty})")
    return qty


def collation_key(text: str) -> Tuple[str, str]:
    """Accent- and case-insensitive sort key; ties fall back to the raw text."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), text or ""


def _searchable_fields(item: Item) -> Tuple[str, ...]:
    return (
        item.name,
        item.description,
        item.device_type,
        str(item.quantity),
        item.serial_number,
        item.location,
    )


class InventoryLedger:
    """Authoritative owner of the item collection and the transaction log.

    Every successful mutation is persisted through the store before the call
    returns; a rejected call or a failed store write leaves both the in-memory
    and persisted state as they were. Mutations are serialized with a lock.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], str] = utc_now_iso,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self.store = store
        self._clock = clock
        self._new_id = id_factory
        self._lock = threading.RLock()
        self._items: List[Item] = self._load_items()
        self._transactions: List[Transaction] = self._load_transactions()
        LOG.info(
            "Ledger loaded: %d item(s), %d transaction(s)",
            len(self._items),
            len(self._transactions),
        )

    # --------------- Loading ---------------
    def _load_list(self, key: str) -> List[Any]:
        raw = self.store.get(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise StoreError(f"Stored {key!r} must be a JSON array, got {type(raw).__name__}")
        return raw

    def _load_items(self) -> List[Item]:
        items: List[Item] = []
        for idx, entry in enumerate(self._load_list(ITEMS_KEY)):
            try:
                items.append(Item.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise StoreError(f"Stored item #{idx} is malformed: {exc}") from exc
        return items

    def _load_transactions(self) -> List[Transaction]:
        transactions: List[Transaction] = []
        for idx, entry in enumerate(self._load_list(TRANSACTIONS_KEY)):
            try:
                tx = Transaction.from_dict(entry)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise StoreError(f"Stored transaction #{idx} is malformed: {exc}") from exc
            if tx.type not in TRANSACTION_TYPES:
                raise StoreError(f"Stored transaction #{idx} has unknown type {tx.type!r}")
            transactions.append(tx)
        return transactions

    # --------------- Read access ---------------
    @property
    def items(self) -> List[Item]:
        with self._lock:
            return [replace(it) for it in self._items]

    @property
    def transactions(self) -> List[Transaction]:
        """Transaction log, most recent first."""
        with self._lock:
            return list(self._transactions)

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            found = self._find_index(item_id)
            return replace(self._items[found]) if found is not None else None

    def find_by_serial(self, serial: str) -> Optional[Item]:
        """Case-insensitive exact serial match; the first match wins on duplicates."""
        needle = (serial or "").strip().casefold()
        if not needle:
            return None
        with self._lock:
            for item in self._items:
                if item.serial_number.strip().casefold() == needle:
                    return replace(item)
        return None

    def search(self, query: str = "") -> List[Item]:
        """Substring match across displayed attributes, sorted by name."""
        needle = (query or "").casefold()
        with self._lock:
            matches = [
                replace(item)
                for item in self._items
                if not needle or any(needle in field.casefold() for field in _searchable_fields(item))
            ]
        matches.sort(key=lambda it: collation_key(it.name))
        return matches

    # --------------- Mutations ---------------
    def add_item(self, draft: ItemDraft) -> Item:
        name = (draft.name or "").strip()
        if not name:
            raise InvalidInput("Item name is required")
        quantity = parse_quantity(draft.quantity)
        serial = (draft.serial_number or "").strip()

        with self._lock:
            if serial:
                existing = self.find_by_serial(serial)
                if existing is not None:
                    raise DuplicateSerial(serial, existing.id)
            now = self._clock()
            item = Item(
                id=self._new_id(),
                name=name,
                description=(draft.description or "").strip(),
                device_type=(draft.device_type or "").strip(),
                serial_number=serial,
                location=(draft.location or "").strip(),
                quantity=quantity,
                last_updated=now,
            )
            tx = self._transaction(item, TRANSACTION_IN, quantity, now)
            self._commit([*self._items, item], [tx, *self._transactions])
        LOG.info("Added item %s (%s) with quantity %d", item.id, item.name, quantity)
        return replace(item)

    def adjust_quantity(self, item_id: str, delta: int) -> Item:
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidInput(f"Quantity change must be a whole number, got {delta!r}")
        if delta == 0:
            raise InvalidInput("Quantity change must not be zero")

        with self._lock:
            idx = self._find_index(item_id)
            if idx is None:
                raise ItemNotFound(item_id)
            current = self._items[idx]
            if delta < 0 and -delta > current.quantity:
                raise InsufficientStock(current.id, current.quantity, -delta)
            now = self._clock()
            updated = replace(current, quantity=current.quantity + delta, last_updated=now)
            tx_type = TRANSACTION_IN if delta > 0 else TRANSACTION_OUT
            tx = self._transaction(updated, tx_type, abs(delta), now)
            items = list(self._items)
            items[idx] = updated
            self._commit(items, [tx, *self._transactions])
        LOG.info(
            "%s of %d for item %s (%s); now %d",
            tx_type,
            abs(delta),
            updated.id,
            updated.name,
            updated.quantity,
        )
        return replace(updated)

    def decommission_item(self, item_id: str) -> Transaction:
        """Remove the item permanently; the Baja transaction outlives it."""
        with self._lock:
            idx = self._find_index(item_id)
            if idx is None:
                raise ItemNotFound(item_id)
            item = self._items[idx]
            tx = self._transaction(item, TRANSACTION_DECOMMISSION, item.quantity, self._clock())
            items = [it for i, it in enumerate(self._items) if i != idx]
            self._commit(items, [tx, *self._transactions])
        LOG.info("Decommissioned item %s (%s) with %d on hand", item.id, item.name, item.quantity)
        return tx

    def decommission_by_serial(self, serial: str) -> Transaction:
        if not (serial or "").strip():
            raise InvalidInput("A serial number is required to decommission by scan")
        with self._lock:
            item = self.find_by_serial(serial)
            if item is None:
                raise ItemNotFound(serial.strip())
            return self.decommission_item(item.id)

    # --------------- Helpers ---------------
    def _find_index(self, item_id: str) -> Optional[int]:
        for idx, item in enumerate(self._items):
            if item.id == item_id:
                return idx
        return None

    def _transaction(self, item: Item, tx_type: str, quantity: int, timestamp: str) -> Transaction:
        return Transaction(
            id=self._new_id(),
            item_id=item.id,
            item_name=item.name,
            type=tx_type,
            quantity=quantity,
            timestamp=timestamp,
        )

    def _commit(self, items: List[Item], transactions: List[Transaction]) -> None:
        # Persist first; in-memory state only moves once the write succeeded.
        self.store.set_many(
            {
                ITEMS_KEY: [it.as_dict() for it in items],
                TRANSACTIONS_KEY: [tx.as_dict() for tx in transactions],
            }
        )
        self._items = items
        self._transactions = transactions
