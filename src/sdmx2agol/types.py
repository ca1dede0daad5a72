"""
Type definitions for the SDMX-to-ArcGIS pipeline.

This module provides the error hierarchy raised by the pipeline stages and the
immutable result objects handed back to callers (CLI, job wrappers).
"""

from __future__ import annotations

import dataclasses
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for pipeline operations.

    `stage` is stamped by the orchestrator when the error crosses a stage
    boundary; library code leaves it unset.
    """
    kind = "PipelineError"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class ValidationError(PipelineError):
    """Request is malformed or a required join field is missing."""
    kind = "ValidationError"


class ParseError(PipelineError):
    """Input does not match the structural shape of its declared format."""
    kind = "ParseError"

    def __init__(self, message: str, path: Optional[str] = None, stage: Optional[str] = None):
        self.path = path
        if path:
            message = f"{message} (at '{path}')"
        super().__init__(message, stage=stage)


class RemoteServiceError(PipelineError):
    """A remote call failed or returned a domain-level failure flag."""
    kind = "RemoteServiceError"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        stage: Optional[str] = None,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message, stage=stage)


class ConflictError(RemoteServiceError):
    """Publish reported a naming collision: a service with that title exists."""
    kind = "ConflictError"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message, status_code=409, retryable=False, stage=stage)


@dataclass(frozen=True)
class JoinStats:
    """Outcome of one geometry join."""
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    unique_keys: int = 0

    def summary(self) -> str:
        return f"{self.unmatched} of {self.total} features unmatched ({self.unique_keys} unique join values)"


@dataclass(frozen=True)
class PipelineResult:
    """Structured outcome of a pipeline run.

    Success carries the published service item id (or, for dry runs and
    fields-only requests, the built collection / fields); failure carries the
    error kind, the stage it happened in and the message.
    """
    success: bool
    service_item_id: Optional[str] = None
    item_id: Optional[str] = None
    stage: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    feature_count: int = 0
    join: Optional[JoinStats] = None
    fields: list[dict[str, Any]] = field(default_factory=list)
    collection: Optional[dict[str, Any]] = field(default=None, repr=False, compare=False)

    @classmethod
    def failure(cls, error: PipelineError, **extra: Any) -> PipelineResult:
        return cls(
            success=False,
            stage=error.stage,
            error_kind=error.kind,
            message=error.message,
            **extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation without the (potentially large) collection."""
        data = {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if f.name != "collection"
        }
        data["join"] = asdict(self.join) if self.join else None
        if self.success:
            data["itemId"] = self.service_item_id
        return data
