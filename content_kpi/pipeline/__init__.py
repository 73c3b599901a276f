"""Content KPI Engine — Pipeline Package.

Batch scoring of a project's pages with progress events.
"""

from content_kpi.pipeline.orchestrator import (
    PipelineEvent,
    PipelineOrchestrator,
    PipelineRun,
    RunStatus,
)

__all__ = [
    "PipelineEvent",
    "PipelineOrchestrator",
    "PipelineRun",
    "RunStatus",
]
