"""
Resilient Operation Executor

DESIGN DECISION: Every remote call the sync layer makes goes through this
one wrapper. The caller hands over an operation that takes a connection;
the executor decides which connection it runs on and how often.

POLICY:
- Run against the primary, identity-scoped connection
- try_with_fallback: on failure, immediately re-run once against the
  elevated connection, before any backoff
- Otherwise back off exponentially (500 ms, 1000 ms, 2000 ms by default)
  and retry on the primary connection
- When retries run out, re-raise the last error exactly as it was raised

The executor does not classify errors. Callers that must not retry a
particular error (a uniqueness conflict, say) pass retry_if.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tagsync.services.storage import ConnectionInterface


T = TypeVar("T")
Operation = Callable[[ConnectionInterface], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]

logger = structlog.get_logger(__name__)


def _retry_everything(error: BaseException) -> bool:
    return True


class ExecutionOptions(BaseModel):
    """Retry policy for one executor call."""
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt"
    )
    initial_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry; doubles on each retry"
    )
    retry_if: Optional[Callable[[BaseException], bool]] = Field(
        default=None,
        description="Return False to stop retrying on this error. None retries all errors."
    )


class OperationDescriptor(BaseModel):
    """
    Progress of one executor invocation.

    Lives for exactly one call; never shared or persisted.
    """

    label: str
    attempt: int = 0
    max_retries: int
    current_delay_ms: int
    using_elevated_connection: bool = False


class ResilientExecutor:
    """
    Runs operations with retry, backoff and privilege-escalation fallback.

    Connections are injected, so tests can hand in in-memory or
    fault-injecting connections.
    """

    def __init__(
        self,
        primary: ConnectionInterface,
        elevated: Optional[ConnectionInterface] = None,
        default_options: Optional[ExecutionOptions] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize executor.

        Args:
            primary: Identity-scoped connection, used first on every attempt
            elevated: Connection with broader privileges for try_with_fallback.
                      If None, try_with_fallback behaves like execute.
            default_options: Policy used when a call passes no options
            sleep: Awaitable sleep used between retries (seconds)
        """
        self._primary = primary
        self._elevated = elevated
        self._default_options = default_options or ExecutionOptions()
        self._sleep = sleep

    @property
    def has_fallback(self) -> bool:
        return self._elevated is not None

    async def execute(
        self,
        operation: Operation,
        options: Optional[ExecutionOptions] = None,
        label: str = "operation",
    ) -> T:
        """Run operation on the primary connection with retry and backoff."""
        return await self._run(operation, options, use_fallback=False, label=label)

    async def try_with_fallback(
        self,
        operation: Operation,
        options: Optional[ExecutionOptions] = None,
        label: str = "operation",
    ) -> T:
        """
        Run operation, escalating to the elevated connection on failure.

        Each attempt tries primary then elevated; backoff only happens
        once both have failed.
        """
        return await self._run(operation, options, use_fallback=True, label=label)

    async def _run(
        self,
        operation: Operation,
        options: Optional[ExecutionOptions],
        use_fallback: bool,
        label: str,
    ) -> T:
        options = options or self._default_options
        descriptor = OperationDescriptor(
            label=label,
            max_retries=options.max_retries,
            current_delay_ms=options.initial_delay_ms,
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_retries + 1),
            wait=wait_exponential(multiplier=options.initial_delay_ms / 1000, exp_base=2),
            retry=retry_if_exception(options.retry_if or _retry_everything),
            reraise=True,
            sleep=self._sleep,
            before_sleep=lambda state: self._log_retry(state, descriptor),
        )

        async for attempt in retrying:
            with attempt:
                descriptor.attempt = attempt.retry_state.attempt_number
                result = await self._attempt_once(operation, descriptor, use_fallback)
        return result

    async def _attempt_once(
        self,
        operation: Operation,
        descriptor: OperationDescriptor,
        use_fallback: bool,
    ) -> T:
        descriptor.using_elevated_connection = False
        try:
            return await operation(self._primary)
        except Exception as primary_error:
            logger.warning(
                "operation_failed",
                label=descriptor.label,
                connection=self._primary.name,
                attempt=descriptor.attempt,
                max_attempts=descriptor.max_retries + 1,
                error=str(primary_error),
            )
            if not use_fallback or self._elevated is None:
                raise

        descriptor.using_elevated_connection = True
        logger.info(
            "falling_back_to_elevated",
            label=descriptor.label,
            connection=self._elevated.name,
            attempt=descriptor.attempt,
        )
        try:
            result = await operation(self._elevated)
        except Exception as elevated_error:
            logger.error(
                "elevated_operation_failed",
                label=descriptor.label,
                connection=self._elevated.name,
                attempt=descriptor.attempt,
                error=str(elevated_error),
            )
            raise
        logger.info("elevated_operation_succeeded", label=descriptor.label)
        return result

    def _log_retry(self, state: RetryCallState, descriptor: OperationDescriptor) -> None:
        delay_s = state.next_action.sleep if state.next_action else 0.0
        descriptor.current_delay_ms = int(round(delay_s * 1000))
        logger.info(
            "operation_retry_scheduled",
            label=descriptor.label,
            attempt=state.attempt_number,
            next_attempt=state.attempt_number + 1,
            max_retries=descriptor.max_retries,
            delay_ms=descriptor.current_delay_ms,
        )
