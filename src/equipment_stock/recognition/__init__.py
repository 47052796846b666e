from .pipeline import RecognitionPipeline, StageResult, merge_stage_results
from .service import OpenRouterRecognitionService, RecognitionService

__all__ = [
    "OpenRouterRecognitionService",
    "RecognitionPipeline",
    "RecognitionService",
    "StageResult",
    "merge_stage_results",
]
