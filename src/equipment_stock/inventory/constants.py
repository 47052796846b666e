from __future__ import annotations

from typing import Tuple

# Transaction types, kept in the original Spanish vocabulary of the stored log.
TRANSACTION_IN = "Entrada"
TRANSACTION_OUT = "Salida"
TRANSACTION_DECOMMISSION = "Baja"

TRANSACTION_TYPES: Tuple[str, ...] = (
    TRANSACTION_IN,
    TRANSACTION_OUT,
    TRANSACTION_DECOMMISSION,
)

# Key-value store namespaces.
ITEMS_KEY = "inventory"
TRANSACTIONS_KEY = "transactions"

EXPORT_HEADERS: Tuple[str, ...] = (
    "Nombre",
    "Descripción",
    "Tipo de Dispositivo",
    "Cantidad",
    "N/S",
    "Ubicación",
)

# Suggested categories for enrichment; any free text is accepted back.
DEVICE_CATEGORIES: Tuple[str, ...] = (
    "PC",
    "Laptop",
    "Printer",
    "Monitor",
    "Keyboard",
    "Mouse",
    "Server",
    "Router",
    "Switch",
    "Other",
)
