"""
Acquisition pipeline for Provider Observatory.

Fetches external data sources on a schedule and publishes them with an
integrity manifest.
"""

from .runner import AcquisitionPipeline, PipelineBusyError, PipelineError, handle_scheduled_invocation

__all__ = [
    "AcquisitionPipeline",
    "PipelineBusyError",
    "PipelineError",
    "handle_scheduled_invocation",
]
