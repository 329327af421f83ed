"""
Exponential-backoff retry with fallback values.
"""

from typing import Any, Awaitable, Callable, Optional, Union
from datetime import timedelta
from dataclasses import replace
import asyncio
import inspect

from .audit_logger import AuditLogger, SecurityEventType
from .error_manager import ErrorManager, ErrorContext
from .errors import Severity
from utils.logging import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]

# Marks "no fallback supplied" so that None stays a valid fallback value
_MISSING = object()


class RetryExecutor:
    """
    Runs operations with pure exponential backoff.

    Attempt 0 runs immediately; attempt k waits ``2**(k-1) * base_delay``
    first. There is no jitter and no cap other than ``max_retries``.
    Operations may be plain callables or coroutine functions.
    """

    def __init__(
        self,
        error_manager: ErrorManager,
        audit_logger: Optional[AuditLogger] = None,
        base_delay: timedelta = timedelta(seconds=1),
        default_max_retries: int = 3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.error_manager = error_manager
        self.audit_logger = audit_logger
        self.base_delay = base_delay
        self.default_max_retries = default_max_retries
        self.sleep = sleep or asyncio.sleep

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (attempt 0 never waits)."""
        if attempt <= 0:
            return 0.0
        return (2 ** (attempt - 1)) * self.base_delay.total_seconds()

    async def retry_operation(
        self,
        operation: Operation,
        context: Optional[ErrorContext] = None,
        max_retries: Optional[int] = None
    ) -> Any:
        """
        Run ``operation`` until it succeeds or ``max_retries`` retries are spent.

        Raises:
            The exception of the last attempt, unchanged
        """
        context = context or ErrorContext()
        if max_retries is None:
            max_retries = self.default_max_retries

        for attempt in range(max_retries + 1):
            if attempt > 0:
                await self.sleep(self.backoff_delay(attempt))

            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result

            except Exception as e:
                if attempt == max_retries:
                    self._report_exhausted(e, context, attempt + 1, max_retries)
                    raise

                logger.warning(f"Operation failed, retrying ({attempt + 1}/{max_retries}): {e}")
                continue

            if attempt > 0:
                self._log_recovery(context, attempt + 1)
            return result

    async def with_fallback(
        self,
        operation: Operation,
        fallback: Any = _MISSING,
        context: Optional[ErrorContext] = None
    ) -> Any:
        """
        Retry ``operation`` and return ``fallback`` if every attempt fails.

        Without a fallback the last exception propagates.
        """
        context = context or ErrorContext()

        try:
            return await self.retry_operation(operation, context)
        except Exception as e:
            if fallback is _MISSING:
                raise

            fallback_context = replace(
                context,
                action='using_fallback_data',
                component=context.component or 'network_handler'
            )
            self.error_manager.handle_error(e, fallback_context, severity=Severity.MEDIUM)

            if self.audit_logger is not None:
                self.audit_logger.log_security_event(
                    context.user_id,
                    SecurityEventType.DATA_ACCESS,
                    "Using fallback data after retries were exhausted",
                    Severity.MEDIUM,
                    {
                        'action': 'using_fallback_data',
                        'component': fallback_context.component,
                        'error': str(e)
                    }
                )

            logger.warning(f"Returning fallback data for {fallback_context.component}: {e}")
            return fallback

    async def handle_network_error(
        self,
        error: BaseException,
        original_request: Operation,
        fallback: Any = _MISSING
    ) -> Any:
        """
        Retry a request that failed with a network error.

        Any other error is re-raised immediately.
        """
        if not self.error_manager.classifier.is_network_error(error):
            raise error

        return await self.with_fallback(
            original_request,
            fallback,
            ErrorContext(action='network_retry', component='network_handler')
        )

    # Private methods

    def _report_exhausted(
        self,
        error: Exception,
        context: ErrorContext,
        attempts: int,
        max_retries: int
    ) -> None:
        failed_context = replace(
            context,
            action='retry_operation_failed',
            metadata={**context.metadata, 'attempts': attempts, 'max_retries': max_retries}
        )
        self.error_manager.handle_error(
            error,
            failed_context,
            severity=Severity.HIGH,
            max_retries=max_retries,
            retry_count=attempts - 1
        )
        if attempts > 1:
            self.error_manager.record_retry_outcome(recovered=False)

    def _log_recovery(self, context: ErrorContext, attempts: int) -> None:
        logger.info(f"Operation recovered after {attempts} attempts")
        self.error_manager.record_retry_outcome(recovered=True)

        if self.audit_logger is None:
            return

        self.audit_logger.log_security_event(
            context.user_id,
            SecurityEventType.DATA_ACCESS,
            f"Operation recovered after {attempts} attempts",
            Severity.LOW,
            {
                'attempts': attempts,
                'component': context.component,
                'action': context.action
            }
        )
