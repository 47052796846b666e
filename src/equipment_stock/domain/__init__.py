from .errors import (
    AnalysisFailed,
    CameraUnavailable,
    CaptureCancelled,
    CaptureError,
    CaptureNotReady,
    DuplicateSerial,
    EquipmentStockError,
    InsufficientStock,
    InvalidInput,
    ItemNotFound,
    LedgerError,
    RecognitionServiceError,
    StoreError,
)
from .models import Candidate, CapturedImage, Item, ItemDraft, Transaction

__all__ = [
    "AnalysisFailed",
    "CameraUnavailable",
    "Candidate",
    "CapturedImage",
    "CaptureCancelled",
    "CaptureError",
    "CaptureNotReady",
    "DuplicateSerial",
    "EquipmentStockError",
    "InsufficientStock",
    "InvalidInput",
    "Item",
    "ItemDraft",
    "ItemNotFound",
    "LedgerError",
    "RecognitionServiceError",
    "StoreError",
    "Transaction",
]
