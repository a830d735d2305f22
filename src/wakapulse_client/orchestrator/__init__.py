"""Pipeline orchestration module for coordinating the WakaPulse client."""

from .pipeline_orchestrator import PipelineConfig, PipelineOrchestrator, create_default_pipeline

__all__ = ["PipelineOrchestrator", "PipelineConfig", "create_default_pipeline"]
