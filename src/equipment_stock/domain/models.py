from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Union


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class Item:
    id: str
    name: str
    description: str
    device_type: str
    serial_number: str
    location: str
    quantity: int
    last_updated: str  # ISO-8601 UTC

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        quantity = data.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValueError(f"item quantity must be an integer, got {quantity!r}")
        return cls(
            id=str(data["id"]),
            name=_text(data.get("name")),
            description=_text(data.get("description")),
            device_type=_text(data.get("deviceType")),
            serial_number=_text(data.get("serialNumber")),
            location=_text(data.get("location")),
            quantity=quantity,
            last_updated=_text(data.get("lastUpdated")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "deviceType": self.device_type,
            "serialNumber": self.serial_number,
            "quantity": self.quantity,
            "location": self.location,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class Transaction:
    """Immutable audit record. ``item_name`` is the name at the time of the event."""

    id: str
    item_id: str
    item_name: str
    type: str  # Entrada | Salida | Baja
    quantity: int
    timestamp: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        quantity = data.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValueError(f"transaction quantity must be an integer, got {quantity!r}")
        return cls(
            id=str(data["id"]),
            item_id=str(data["itemId"]),
            item_name=_text(data.get("itemName")),
            type=str(data["type"]),
            quantity=quantity,
            timestamp=_text(data.get("timestamp")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "type": self.type,
            "quantity": self.quantity,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Candidate:
    """Unconfirmed device identity produced by the recognition pipeline."""

    name: str = ""
    description: str = ""
    serial_number: str = ""
    device_type: str = ""

    def as_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "description": self.description,
            "serialNumber": self.serial_number,
            "deviceType": self.device_type,
        }


@dataclass(frozen=True)
class ItemDraft:
    """Pending form values; ``quantity`` stays raw until the ledger validates it."""

    name: str = ""
    description: str = ""
    device_type: str = ""
    serial_number: str = ""
    quantity: Union[int, str] = ""
    location: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemDraft":
        quantity = data.get("quantity", "")
        return cls(
            name=_text(data.get("name")),
            description=_text(data.get("description")),
            device_type=_text(data.get("deviceType")),
            serial_number=_text(data.get("serialNumber")),
            quantity=quantity if isinstance(quantity, int) and not isinstance(quantity, bool) else _text(quantity),
            location=_text(data.get("location")),
        )

    def merged_with(self, candidate: Candidate) -> "ItemDraft":
        """Fill the draft from a candidate; empty candidate fields keep the draft value."""
        return replace(
            self,
            name=candidate.name or self.name,
            description=candidate.description or self.description,
            serial_number=candidate.serial_number or self.serial_number,
            device_type=candidate.device_type or self.device_type,
        )


@dataclass(frozen=True)
class CapturedImage:
    data: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = "image/jpeg"
