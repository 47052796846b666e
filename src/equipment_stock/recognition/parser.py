from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple

from ..logging import get_logger


LOG = get_logger("recognition-parser")

LABEL_FIELDS: Tuple[str, ...] = ("brand", "model", "serialNumber")


class LabelParseError(Exception):
    pass


def scavenge_json_block(s: str) -> Optional[Any]:
    if not s:
        return None

    candidates = []

    # 1) Fenced code blocks first (e.g., ```json ... ```)
    fenced = re.search(r"```(?:json)?\s*(.*?)```", s, re.DOTALL)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    # 2) Outermost object slice
    start_obj = s.find("{")
    end_obj = s.rfind("}")
    if start_obj != -1 and end_obj != -1 and end_obj > start_obj:
        candidates.append(s[start_obj : end_obj + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue

    return None


def parse_label_payload(raw: Any) -> Dict[str, str]:
    """Validate extraction output into exactly brand/model/serialNumber strings.

    Accepts a mapping or JSON text (plain, fenced, or embedded in prose).
    ``null`` values read as empty strings; a missing key or any other type fails.
    """
    payload = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError:
            LOG.debug("Extraction output is not plain JSON; scavenging (first 300 chars: %r)", raw[:300])
            payload = scavenge_json_block(raw)
    if not isinstance(payload, dict):
        raise LabelParseError("extraction output must be a JSON object")

    fields: Dict[str, str] = {}
    for key in LABEL_FIELDS:
        if key not in payload:
            raise LabelParseError(f"{key} missing from extraction output")
        value = payload[key]
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise LabelParseError(f"{key} must be a string, got {type(value).__name__}")
        fields[key] = value.strip()
    return fields


_WRAPPERS: Tuple[str, ...] = ("**", "`", '"', "*")


def _unwrap(field: str) -> str:
    """Trim whitespace and markdown/quotes that enclose the whole field.

    A delimiter only counts when the same one opens and closes the field, so
    a lone trailing inch mark (``27"``) survives.
    """
    value = field.strip()
    changed = True
    while changed:
        changed = False
        for w in _WRAPPERS:
            if len(value) > 2 * len(w) and value.startswith(w) and value.endswith(w):
                value = value[len(w) : -len(w)].strip()
                changed = True
                break
    return value


def parse_enrichment(text: Optional[str]) -> Optional[Tuple[str, str]]:
    """Return (full_name, category) from a ``name;category`` answer, or None.

    The first line holding a semicolon is used; anything after a second
    semicolon is ignored.
    """
    if not isinstance(text, str):
        return None
    for line in text.strip().splitlines():
        parts = line.split(";")
        if len(parts) >= 2:
            category = _unwrap(_unwrap(parts[1]).rstrip("."))
            return _unwrap(parts[0]), category
    return None


def fallback_name(brand: str, model: str) -> str:
    return " ".join(part for part in (brand, model) if part)
