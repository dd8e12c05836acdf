"""Streaming sub-package — asyncio ingestion of presence readings."""

from garden_watch.streaming.pipeline import StreamPipeline

__all__ = ["StreamPipeline"]
