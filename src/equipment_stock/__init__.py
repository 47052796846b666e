"""Equipment stock tracking with camera-based label recognition.

Subpackages:
- capture: camera session and still-frame extraction
- recognition: two-stage label recognition pipeline
- inventory: stock ledger, persistence, CSV export, HTTP API
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "logging",
    "paths",
]
