from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..domain.errors import AnalysisFailed, RecognitionServiceError
from ..domain.models import Candidate, CapturedImage
from ..inventory.constants import DEVICE_CATEGORIES
from ..logging import get_logger
from .parser import LabelParseError, fallback_name, parse_enrichment, parse_label_payload
from .service import RecognitionService


LOG = get_logger("recognition-pipeline")

STAGE_OK = "ok"
STAGE_DEGRADED = "degraded"
STAGE_ERROR = "error"


@dataclass(frozen=True)
class StageResult:
    """Outcome of one pipeline stage.

    - ok: all fields present
    - degraded: partial fields, still usable
    - error: nothing usable; ``reason`` says why
    """

    status: str
    fields: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None

    @classmethod
    def ok(cls, **fields: str) -> "StageResult":
        return cls(STAGE_OK, dict(fields))

    @classmethod
    def degraded(cls, reason: str, **fields: str) -> "StageResult":
        return cls(STAGE_DEGRADED, dict(fields), reason)

    @classmethod
    def error(cls, reason: str) -> "StageResult":
        return cls(STAGE_ERROR, {}, reason)


# ---------- prompt & schema ----------
def _extraction_prompt() -> str:
    return (
        "Analyze the image of a device label. Extract brand, model, and serial number. "
        "Respond with a JSON object containing 'brand', 'model', and 'serialNumber'. "
        "Return empty strings for missing fields."
    )


def _label_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "brand": {"type": "string", "description": "Device brand or manufacturer name."},
            "model": {"type": "string", "description": "Device model name or number."},
            "serialNumber": {"type": "string", "description": "Device serial number (S/N)."},
        },
        "required": ["brand", "model", "serialNumber"],
        "additionalProperties": False,
    }


def _enrichment_prompt(brand: str, model: str) -> str:
    categories = ", ".join(DEVICE_CATEGORIES)
    return (
        f'Using a web search, find the full product name and category for a device with brand "{brand}" '
        f'and model "{model}".\n'
        f"The category should be a single word like: {categories}.\n"
        "Respond with ONLY the full product name, a semicolon, and then the category.\n"
        "Example: HP LaserJet Pro M404dn;Printer"
    )


def merge_stage_results(extraction: StageResult, enrichment: Optional[StageResult]) -> Candidate:
    """Build the candidate from the stage outcomes. ``enrichment=None`` means skipped."""
    if extraction.status == STAGE_ERROR:
        raise AnalysisFailed()

    brand = extraction.fields.get("brand", "")
    model = extraction.fields.get("model", "")
    serial = extraction.fields.get("serialNumber", "")

    if enrichment is None:
        return Candidate(name=brand, description=model, serial_number=serial, device_type="")

    full_name = enrichment.fields.get("fullName", "") or fallback_name(brand, model)
    category = enrichment.fields.get("category", "")
    return Candidate(name=full_name, description=model, serial_number=serial, device_type=category)


class RecognitionPipeline:
    """Label photo -> Candidate through extraction then search-grounded enrichment.

    Stateless; re-invoke with the same image to retry.
    """

    def __init__(self, service: RecognitionService) -> None:
        self.service = service

    async def extract(self, image: CapturedImage) -> StageResult:
        try:
            raw = await self.service.analyze(image, _extraction_prompt(), _label_schema())
        except RecognitionServiceError as exc:
            LOG.warning("Extraction call failed: %s", exc)
            return StageResult.error(f"service: {exc}")
        try:
            fields = parse_label_payload(raw)
        except LabelParseError as exc:
            LOG.warning("Extraction output rejected: %s", exc)
            return StageResult.error(f"parse: {exc}")
        LOG.info(
            "Extraction ok: brand=%r model=%r serial=%s",
            fields["brand"],
            fields["model"],
            "yes" if fields["serialNumber"] else "no",
        )
        return StageResult.ok(**fields)

    async def enrich(self, brand: str, model: str) -> StageResult:
        """Search-grounded name/category lookup. Never fatal.

        Any failure of this stage (service error, timeout, unexpected
        exception, unparseable answer) yields a degraded result holding the
        ``brand model`` fallback. Cancellation still propagates.
        """
        fallback = fallback_name(brand, model)
        try:
            text = await self.service.analyze_with_search(_enrichment_prompt(brand, model))
        except RecognitionServiceError as exc:
            LOG.warning("Enrichment call failed; using %r: %s", fallback, exc)
            return StageResult.degraded(f"service: {exc}", fullName=fallback, category="")
        except Exception as exc:
            LOG.exception("Unexpected enrichment failure; using %r", fallback)
            return StageResult.degraded(f"unexpected: {type(exc).__name__}", fullName=fallback, category="")
        parsed = parse_enrichment(text)
        if parsed is None:
            LOG.warning("Enrichment answer has no 'name;category' pair; using %r", fallback)
            return StageResult.degraded("unparseable enrichment", fullName=fallback, category="")
        full_name, category = parsed
        if not full_name:
            return StageResult.degraded("empty product name", fullName=fallback, category=category)
        LOG.info("Enrichment ok: %r (%s)", full_name, category or "no category")
        return StageResult.ok(fullName=full_name, category=category)

    async def analyze(self, image: CapturedImage) -> Candidate:
        try:
            extraction = await self.extract(image)
            if extraction.status == STAGE_ERROR:
                raise AnalysisFailed()
            enrichment: Optional[StageResult] = None
            if extraction.fields.get("model"):
                enrichment = await self.enrich(extraction.fields["brand"], extraction.fields["model"])
            else:
                LOG.info("No model on label; skipping enrichment")
            return merge_stage_results(extraction, enrichment)
        except AnalysisFailed:
            raise
        except Exception as exc:
            LOG.exception("Unexpected recognition failure")
            raise AnalysisFailed() from exc
