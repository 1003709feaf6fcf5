"""Resilient execution of LLM completion and embedding requests."""

import importlib.metadata
import logging

from llm_router.core.exceptions import (
    BackendError,
    ConfigurationError,
    InvariantViolationError,
    LLMError,
    LLMRouterError,
    RecoveryError,
)
from llm_router.core.models import (
    ErrorCode,
    FailureKind,
    OutputFormat,
    Purpose,
    RecoveryErrorKind,
)
from llm_router.core.types import (
    CompletionOptions,
    ExecutionContext,
    ExecutionDiagnostics,
    Failure,
    ModelDescriptor,
    RecoverySuccess,
    Result,
    RetryPolicy,
    Success,
    TokensUsage,
)
from llm_router.pipeline.candidates import Candidate, CandidateSpec, build_chain
from llm_router.pipeline.cropping import CropPolicy, TruncatingCropPolicy
from llm_router.pipeline.execution import ExecutionPipeline
from llm_router.recovery import ResponseSchema, SchemaCatalog, recover
from llm_router.router import LLMRouter, RouterConfig, create_router
from llm_router.telemetry import TelemetryContext, TelemetryReporter

try:
    __version__ = importlib.metadata.version("llm-router")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library logging stays silent unless the application configures handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Router
    "LLMRouter",
    "RouterConfig",
    "create_router",
    # Pipelines
    "ExecutionPipeline",
    "Candidate",
    "CandidateSpec",
    "build_chain",
    "CropPolicy",
    "TruncatingCropPolicy",
    "recover",
    "ResponseSchema",
    "SchemaCatalog",
    # Types
    "CompletionOptions",
    "ExecutionContext",
    "ExecutionDiagnostics",
    "Failure",
    "ModelDescriptor",
    "RecoverySuccess",
    "Result",
    "RetryPolicy",
    "Success",
    "TokensUsage",
    # Enums
    "ErrorCode",
    "FailureKind",
    "OutputFormat",
    "Purpose",
    "RecoveryErrorKind",
    # Exceptions
    "BackendError",
    "ConfigurationError",
    "InvariantViolationError",
    "LLMError",
    "LLMRouterError",
    "RecoveryError",
    # Telemetry
    "TelemetryContext",
    "TelemetryReporter",
]
