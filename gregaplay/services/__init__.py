"""Pipeline components: gateway, staging, encoder, publisher and orchestrator."""

from gregaplay.services.clip_gateway import (
    ClipGateway,
    DatabaseClipGateway,
    SupabaseClipGateway,
    build_gateway,
)
from gregaplay.services.concatenation import ConcatenationEngine, EncodeFailure, EncodeSuccess
from gregaplay.services.pipeline_orchestrator import (
    PipelineResult,
    VideoAssemblyPipeline,
    build_pipeline,
)
from gregaplay.services.publisher import ArtifactPublisher
from gregaplay.services.staging import StagingArea

__all__ = [
    "ArtifactPublisher",
    "ClipGateway",
    "ConcatenationEngine",
    "DatabaseClipGateway",
    "EncodeFailure",
    "EncodeSuccess",
    "PipelineResult",
    "StagingArea",
    "SupabaseClipGateway",
    "VideoAssemblyPipeline",
    "build_gateway",
    "build_pipeline",
]
