import logging
import os
from typing import Union

ROOT_LOGGER = "equipment-stock"

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.upper().strip())
        if isinstance(level, int):
            return level
    return logging.INFO


def _root() -> logging.Logger:
    """The package logger that owns every handler; configured on first use.

    Module loggers are its children and only propagate here, so changing the
    level in one place (``set_level``) affects the whole package.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    root.setLevel(_coerce_level(os.environ.get("LOG_LEVEL", "INFO")))
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            root.warning(f"LOG_FILE {log_file!r} could not be opened ({exc}); logging to stderr only")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the ``equipment-stock.<name>`` logger (LOG_LEVEL / LOG_FILE aware)."""
    return _root().getChild(name)


def set_level(level: Union[str, int, None]) -> int:
    """Override the package log level at runtime; returns the level applied."""
    resolved = _coerce_level(level)
    _root().setLevel(resolved)
    return resolved
