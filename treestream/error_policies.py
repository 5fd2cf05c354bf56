"""
Error handling policies for treestream.

Readers and writers report every failure exactly once through their
``error`` signal and never retry. Whether a transfer keeps going after a
failure is the orchestrator's decision; a policy encodes that decision
and is subscribed to the root reader and writer with ``attach_policy``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from .core.events import EventEmitter


logger = logging.getLogger(__name__)


def _describe(error: Exception, node: Any) -> dict:
    return {
        'path': getattr(error, 'path', None) or getattr(node, 'path', None),
        'operation': getattr(error, 'operation', None),
        'error': error,
        'error_type': type(error).__name__,
        'error_message': str(error),
    }


class ErrorPolicy(ABC):
    """
    Base class for error handling policies.

    Subclasses decide, per failure, whether the transfer continues
    (return normally) or aborts (raise).
    """

    @abstractmethod
    async def handle(self, error: Exception, node: Any) -> None:
        """
        Handle an error signalled by a reader or writer.

        Args:
            error: The failure that was signalled
            node: The reader or writer where the failure originated

        Raises:
            The error (or another exception) to abort the transfer
        """
        pass


class FailFastPolicy(ErrorPolicy):
    """
    Policy that immediately re-raises any error, stopping the transfer.

    This is the default: any failure halts the whole operation.
    """

    async def handle(self, error: Exception, node: Any) -> None:
        raise error


class CollectErrorsPolicy(ErrorPolicy):
    """
    Policy that records every error and lets the transfer continue.

    The failed branch is skipped; its siblings are still transferred.
    """

    def __init__(self):
        self.errors: List[dict] = []
        self.skipped_paths: List[str] = []

    async def handle(self, error: Exception, node: Any) -> None:
        self._record(error, node)

    def _record(self, error: Exception, node: Any) -> dict:
        record = _describe(error, node)
        self.errors.append(record)
        if record['path'] is not None:
            self.skipped_paths.append(record['path'])
        return record

    def get_statistics(self) -> dict:
        """
        Get statistics about errors encountered.

        Returns:
            Dictionary with error counts and details
        """
        by_type = {}
        for record in self.errors:
            by_type[record['error_type']] = by_type.get(record['error_type'], 0) + 1
        return {
            'total_errors': len(self.errors),
            'by_type': by_type,
            'skipped_paths': len(self.skipped_paths),
            'errors': self.errors,
        }


class ContinueOnErrorsPolicy(CollectErrorsPolicy):
    """
    Policy that logs errors and continues the transfer.

    Like CollectErrorsPolicy, with a warning logged for each failure.
    """

    def __init__(self, verbose: bool = True):
        """
        Initialize the policy.

        Args:
            verbose: If True, log a warning when an error occurs
        """
        super().__init__()
        self.verbose = verbose

    async def handle(self, error: Exception, node: Any) -> None:
        record = self._record(error, node)
        if self.verbose:
            if isinstance(error, PermissionError) or isinstance(error.__cause__, PermissionError):
                logger.warning("Skipping inaccessible path '%s': %s", record['path'], error)
            else:
                logger.warning("Error during %s for '%s': %s",
                               record['operation'] or 'transfer', record['path'], error)


class ThresholdPolicy(CollectErrorsPolicy):
    """
    Policy that tolerates errors up to a threshold, then fails fast.

    Useful when a few unreadable entries are expected but many indicate
    a systemic problem.
    """

    def __init__(self, max_errors: int = 10, verbose: bool = True):
        """
        Initialize threshold policy.

        Args:
            max_errors: Maximum errors to tolerate before aborting
            verbose: If True, log a warning for each tolerated error
        """
        super().__init__()
        self.max_errors = max_errors
        self.verbose = verbose

    @property
    def error_count(self) -> int:
        return len(self.errors)

    async def handle(self, error: Exception, node: Any) -> None:
        record = self._record(error, node)
        if self.error_count > self.max_errors:
            raise RuntimeError(f"Error threshold exceeded ({self.max_errors} errors)") from error
        if self.verbose:
            logger.warning("[%d/%d] Error during %s for '%s': %s", self.error_count,
                           self.max_errors, record['operation'] or 'transfer',
                           record['path'], error)


def attach_policy(emitter: EventEmitter, policy: Optional[ErrorPolicy] = None) -> Callable:
    """
    Route an emitter's ``error`` signal to a policy.

    Args:
        emitter: Root reader or writer
        policy: Policy to consult (defaults to FailFastPolicy)

    Returns:
        The subscribed listener, for use with ``emitter.off``
    """
    policy = policy or FailFastPolicy()

    async def on_error(error: Exception, node: Any = None) -> None:
        await policy.handle(error, node)

    return emitter.on('error', on_error)
