"""Resilient execution package."""

from tagsync.execution.executor import (
    ExecutionOptions,
    OperationDescriptor,
    ResilientExecutor,
)

__all__ = ["ExecutionOptions", "OperationDescriptor", "ResilientExecutor"]
