"""Model access for planning and parameter drafting."""

from .base import Completion, CompletionClient, extract_json

__all__ = ["Completion", "CompletionClient", "extract_json"]
