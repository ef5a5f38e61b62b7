# src/serialist/core/__init__.py
"""Core utilities: configuration access, logging, provider clients and text helpers."""

from .embedding import Embedder, hash_embedding
from .json_repair import extract_json, parse_json, parse_model, repair_truncated_json
from .llm import Completion, LLMClient
from .logs import get_event_logger, get_logger, log_calls, log_message

__all__ = [
    "Completion",
    "Embedder",
    "LLMClient",
    "extract_json",
    "get_event_logger",
    "get_logger",
    "hash_embedding",
    "log_calls",
    "log_message",
    "parse_json",
    "parse_model",
    "repair_truncated_json",
]
