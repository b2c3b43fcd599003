"""
Custom exception classes for evaluation runs.

Using specific exception types allows calling code to distinguish
between different failure modes:
- ConfigurationError: Setup/configuration issues (missing API keys, bad config)
- RunSetupError: A run cannot start or continue because its inputs are missing
- RunNotFoundError / InvalidRunTransitionError: Bad requests against the run API
- StorageError: The results database failed

Provider failures during generation or judging are not exceptions; they are
carried as ProviderError values (see llm_client) and end up in the affected
result's rationale.
"""

from __future__ import annotations


class DashbenchError(Exception):
    """Base exception for dashbench errors."""

    pass


class ConfigurationError(DashbenchError):
    """
    Raised when there's a configuration or setup issue.

    Examples:
        - Missing API keys (OPENAI_API_KEY, OPENROUTER_API_KEY)
        - Missing or unreadable config file
        - Invalid test case import file
    """

    pass


class RunSetupError(DashbenchError):
    """
    Raised when the inputs of an evaluation run cannot be resolved.

    Examples:
        - Unknown generation prompt or model
        - No active test cases
    """

    pass


class RunNotFoundError(DashbenchError):
    """Raised when a run id does not exist."""

    pass


class InvalidRunTransitionError(DashbenchError):
    """
    Raised when a run status change is not allowed.

    Examples:
        - Cancelling a run that already completed
    """

    pass


class StorageError(DashbenchError):
    """Raised when the results database fails."""

    pass
