"""NutriSafe Exception Hierarchy.

This module defines the exception hierarchy used inside the clinical safety
engine. Exceptions carry structured context so they can be logged and turned
into structured issues at the engine boundary; they never escape
``SafetyEngine.evaluate``.

Exception Hierarchy:
    NutriSafeError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── KnowledgeBaseError
    │   ├── KnowledgeBaseLoadError
    │   ├── KnowledgeBaseValidationError
    │   └── StaleKnowledgeBaseError
    ├── EngineError
    │   └── EngineInternalError
    └── ScenarioError
        └── ScenarioLoadError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Structured context for error details."""

    operation: str
    component: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str | None = None

    def __str__(self) -> str:
        parts = [f"[{self.component}] {self.operation}"]
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            parts.append(f"Details: {details_str}")
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class NutriSafeError(Exception):
    """Base exception for all NutriSafe errors.

    Provides structured error handling with context, cause chaining,
    and optional recovery suggestions.

    Attributes:
        message: Human-readable error description
        context: Structured error context with operation details
        cause: Original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.message = message
        self.context = context
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.context:
            parts.append(str(self.context))
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)

    @property
    def suggestion(self) -> str | None:
        """Get recovery suggestion if available."""
        return self.context.suggestion if self.context else None


# Configuration Errors
class ConfigurationError(NutriSafeError):
    """Base class for configuration-related errors."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when configuration file cannot be found."""

    def __init__(self, path: str, searched_locations: list[str] | None = None) -> None:
        context = ErrorContext(
            operation="load_config",
            component="Config",
            details={"path": path, "searched": searched_locations or []},
            suggestion="Create config.yaml or set NUTRISAFE_CONFIG_PATH environment variable",
        )
        super().__init__(f"Configuration file not found: {path}", context=context)


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[dict[str, Any]], config_path: str | None = None) -> None:
        context = ErrorContext(
            operation="validate_config",
            component="Config",
            details={"errors": errors, "config_path": config_path},
            suggestion="Check configuration schema and fix validation errors",
        )
        super().__init__(f"Configuration validation failed: {len(errors)} error(s)", context=context)
        self.validation_errors = errors


# Knowledge Base Errors
class KnowledgeBaseError(NutriSafeError):
    """Base class for knowledge base errors."""

    pass


class KnowledgeBaseLoadError(KnowledgeBaseError):
    """Raised when a knowledge base snapshot cannot be read."""

    def __init__(
        self,
        source: str,
        reason: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        context = ErrorContext(
            operation="load_snapshot",
            component="KnowledgeBase",
            details={"source": source, "reason": reason},
            suggestion="Check the snapshot path and that it is valid YAML or JSON",
        )
        super().__init__(f"Failed to load knowledge base from {source}: {reason}", context=context, cause=cause)
        self.source = source


class KnowledgeBaseValidationError(KnowledgeBaseError):
    """Raised when a snapshot fails validation and must not be published."""

    def __init__(self, version: str | None, errors: list[str]) -> None:
        context = ErrorContext(
            operation="validate_snapshot",
            component="KnowledgeBase",
            details={"version": version, "errors": errors[:20]},
            suggestion="Fix the listed records and republish the snapshot",
        )
        super().__init__(f"Knowledge base validation failed: {len(errors)} error(s)", context=context)
        self.version = version
        self.errors = errors


class StaleKnowledgeBaseError(KnowledgeBaseError):
    """Raised when a query targets an expired, deprecated or released snapshot."""

    def __init__(self, version: str | None, reason: str) -> None:
        context = ErrorContext(
            operation="acquire_snapshot",
            component="KnowledgeBaseStore",
            details={"version": version, "reason": reason},
            suggestion="Publish a current knowledge base snapshot or query the current version",
        )
        super().__init__(f"Knowledge base version {version!r} is stale: {reason}", context=context)
        self.version = version
        self.reason = reason


# Engine Errors
class EngineError(NutriSafeError):
    """Base class for errors raised inside the evaluation pipeline."""

    pass


class EngineInternalError(EngineError):
    """Raised when a pipeline stage fails unexpectedly."""

    def __init__(
        self,
        stage: str,
        reason: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        context = ErrorContext(
            operation=stage,
            component="SafetyEngine",
            details={"reason": reason},
            suggestion="Report the query id to the engine maintainers",
        )
        super().__init__(f"Engine failure during {stage}: {reason}", context=context, cause=cause)
        self.stage = stage


# Scenario Errors
class ScenarioError(NutriSafeError):
    """Base class for regression corpus errors."""

    pass


class ScenarioLoadError(ScenarioError):
    """Raised when a scenario corpus cannot be loaded."""

    def __init__(
        self,
        source: str,
        reason: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        context = ErrorContext(
            operation="load_scenarios",
            component="EvaluationHarness",
            details={"source": source, "reason": reason},
            suggestion="Check the scenario file against the corpus format",
        )
        super().__init__(f"Failed to load scenarios from {source}: {reason}", context=context, cause=cause)
        self.source = source


__all__ = [
    "NutriSafeError",
    "ErrorContext",
    # Configuration
    "ConfigurationError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Knowledge base
    "KnowledgeBaseError",
    "KnowledgeBaseLoadError",
    "KnowledgeBaseValidationError",
    "StaleKnowledgeBaseError",
    # Engine
    "EngineError",
    "EngineInternalError",
    # Scenarios
    "ScenarioError",
    "ScenarioLoadError",
]
