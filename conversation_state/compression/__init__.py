"""Compression gateway and the in-process compression service."""

from __future__ import annotations

from conversation_state.compression.gateway import (
    CompressionGateway,
    CompressionService,
    exceeds_threshold,
)
from conversation_state.compression.service import LocalCompressionService
from conversation_state.compression.summarizer import SummarizerConfig

__all__ = [
    "CompressionGateway",
    "CompressionService",
    "LocalCompressionService",
    "SummarizerConfig",
    "exceeds_threshold",
]
