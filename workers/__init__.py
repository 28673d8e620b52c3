"""Queue processors.

Each processor exposes `process(job)` and is registered on its queue by
pipeline.ScanPipeline.
"""

from workers.analysis import ClassificationProcessor
from workers.digest import DigestProcessor
from workers.generation import PostGenerationProcessor
from workers.orchestrator import OrchestratorResult, ScanOrchestrator, ScanTracker
from workers.source_fetch import FetchJobResult, SourceFetchProcessor

__all__ = [
    "ClassificationProcessor",
    "DigestProcessor",
    "FetchJobResult",
    "OrchestratorResult",
    "PostGenerationProcessor",
    "ScanOrchestrator",
    "ScanTracker",
    "SourceFetchProcessor",
]
