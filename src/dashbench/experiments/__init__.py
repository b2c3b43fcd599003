"""Experiments: run orchestration, provider clients, storage and config."""

from .config import BenchConfig, load_config
from .exceptions import (
    ConfigurationError,
    DashbenchError,
    InvalidRunTransitionError,
    RunNotFoundError,
    RunSetupError,
    StorageError,
)
from .llm_client import (
    GenerationResult,
    GenerationSettings,
    LLMClient,
    LLMResponse,
    MockClient,
    ProviderError,
    create_client,
    generate,
)
from .records import (
    EvaluationResult,
    EvaluationRun,
    ModelRef,
    PromptTemplate,
    RunStatus,
    RunSummary,
    StartRunRequest,
    TestCase,
)
from .runner import EvaluationRunner, compute_average_score
from .test_case_import import import_test_cases, load_test_cases
from .tracker import EvaluationTracker, TrackerConfig

__all__ = [
    # Config
    "BenchConfig",
    "load_config",
    # Errors
    "DashbenchError",
    "ConfigurationError",
    "RunSetupError",
    "RunNotFoundError",
    "InvalidRunTransitionError",
    "StorageError",
    # Clients
    "LLMClient",
    "LLMResponse",
    "MockClient",
    "ProviderError",
    "GenerationResult",
    "GenerationSettings",
    "create_client",
    "generate",
    # Records
    "TestCase",
    "PromptTemplate",
    "ModelRef",
    "StartRunRequest",
    "EvaluationRun",
    "EvaluationResult",
    "RunSummary",
    "RunStatus",
    # Orchestration and storage
    "EvaluationRunner",
    "compute_average_score",
    "EvaluationTracker",
    "TrackerConfig",
    "load_test_cases",
    "import_test_cases",
]
