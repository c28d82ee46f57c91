"""Unified pipeline exception taxonomy.

Every domain exception inherits from ``PipelineError`` and carries
structured context fields that drive retry decisions, per-item error
accounting in batch runs, and the structured failure payloads returned
to inbound callers.

Taxonomy categories
-------------------
- ``ValidationError``: malformed input or geometry, never retryable.
- ``TransientError``: temporary failures (network, throttle, busy source).
- ``PermanentError``: unrecoverable failures (unknown CRS, store rejection).
- ``ContractError``: payload drift from an external source, never retryable.

Component-specific exceptions (``NetworkError``, ``UnknownCRS``,
``StoreError``, ...) live beside the component that raises them and
subclass one of the categories above.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (e.g. ``"import"``, ``"transform"``, ``"query"``).
        code: Machine-readable error code (e.g. ``"INVALID_PARAMS"``).
        retryable: Whether a caller may reasonably retry the operation.
        correlation_id: Request/run correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(PipelineError):
    """Payload or schema drift from an external source. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Cross-cutting exceptions
# ---------------------------------------------------------------------------


class InvalidParams(ValidationError):
    """Caller supplied malformed or missing required input.

    Raised before any network call or store access so that bad requests
    fail fast and are never retried.

    Attributes:
        errors: Per-field messages (``"field: reason"``), possibly empty.
    """

    default_stage = "params"
    default_code = "INVALID_PARAMS"

    def __init__(self, message: str, *, errors: list[str] | None = None, **kwargs: object) -> None:
        self.errors = list(errors or [])
        super().__init__(message, **kwargs)

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["errors"] = list(self.errors)
        return payload
