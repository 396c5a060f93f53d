"""Castor: chat turn orchestration across LLM providers.

Public API:
    - ChatOrchestrator: run one chat turn end to end
    - Config: configuration dataclass
    - classify / error_response: error classification and HTTP mapping
    - search_with_fallback: web search across configured providers
"""

from __future__ import annotations

import logging

from castor.aggregate import AggregatedResponse, aggregate_response, persist_response
from castor.classify import ClassifiedError, ErrorKind, classify, error_response
from castor.config import Config, SearchSettings
from castor.credentials import CredentialDecision, resolve_credentials
from castor.engine import StreamHandle, StreamSession, stream_text
from castor.errors import (
    APIError,
    AuthError,
    CastorError,
    ConfigurationError,
    InternalError,
    RateLimitError,
    SearchError,
    UsageLimitError,
    UserKeyRequiredError,
    ValidationError,
)
from castor.models import ModelCatalog, ModelDefinition, default_catalog
from castor.orchestrator import ChatOrchestrator, TurnResponse
from castor.reasoning import build_provider_options
from castor.request import ChatTurnRequest, validate_chat_request
from castor.search import SearchTool, search_with_fallback
from castor.store import ChatStore, InMemoryChatStore
from castor.telemetry import Telemetry

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-chat")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AggregatedResponse",
    "AuthError",
    "CastorError",
    "ChatOrchestrator",
    "ChatStore",
    "ChatTurnRequest",
    "ClassifiedError",
    "Config",
    "ConfigurationError",
    "CredentialDecision",
    "ErrorKind",
    "InMemoryChatStore",
    "InternalError",
    "ModelCatalog",
    "ModelDefinition",
    "RateLimitError",
    "SearchError",
    "SearchSettings",
    "SearchTool",
    "StreamHandle",
    "StreamSession",
    "Telemetry",
    "TurnResponse",
    "UsageLimitError",
    "UserKeyRequiredError",
    "ValidationError",
    "aggregate_response",
    "build_provider_options",
    "classify",
    "default_catalog",
    "error_response",
    "persist_response",
    "resolve_credentials",
    "search_with_fallback",
    "stream_text",
    "validate_chat_request",
]
