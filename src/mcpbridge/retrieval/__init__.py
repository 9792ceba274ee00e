"""Relevance ranking and schema compression for smart-mode tool exposure."""

from .compressor import SchemaCompressor
from .models import CompressedTool, Decompressed, RelevanceScore
from .ranker import RelevanceRanker

__all__ = [
    "CompressedTool",
    "Decompressed",
    "RelevanceRanker",
    "RelevanceScore",
    "SchemaCompressor",
]
