"""Step results and the failure taxonomy.

Every workflow step produces a :class:`StepOutcome`.  The transition
table only ever branches on ``outcome.status``; it never inspects page
content or exception text.

Failure kinds:
    * **Logical** -- an expected negative answer to a well-formed action
      (wrong credentials, nothing to claim).  May route to an
      alternative path.
    * **Technical** -- timeouts, missing UI, connectivity, any
      unexpected exception.  Always escalated to ``ERROR``.
    * **Exhausted** -- a bounded attempt counter reached its cap.
      Escalated to ``ERROR``.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """Base class for failures raised by the action executor."""


class LogicalFailure(ActionError):
    """Expected negative result of a well-formed action."""


class TechnicalFailure(ActionError):
    """Unexpected failure: missing element, bad data, lost connection."""


class StepStatus(Enum):
    SUCCESS = "success"
    LOGICAL_FAILURE = "logical_failure"
    TECHNICAL_FAILURE = "technical_failure"
    EXHAUSTED = "exhausted"


class TechnicalCause(Enum):
    """Coarse cause of a technical failure, used for log lines only."""
    TIMEOUT = "timeout"
    BROWSER_CLOSED = "browser_closed"
    CONNECTION = "connection"
    MISSING_ELEMENT = "missing_element"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StepOutcome:
    """Result of one workflow step.

    Attributes:
        status: Success or the kind of failure.
        value: Payload of a successful step (session state, balance,
            claimed count, ...).
        reason: Human readable detail for failures.
        cause: Original exception for technical failures.
    """
    status: StepStatus
    value: Any = None
    reason: str = ""
    cause: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Any = None) -> "StepOutcome":
        return cls(StepStatus.SUCCESS, value=value)

    @classmethod
    def logical(cls, reason: str, value: Any = None) -> "StepOutcome":
        return cls(StepStatus.LOGICAL_FAILURE, value=value, reason=reason)

    @classmethod
    def technical(
        cls, cause: Optional[BaseException] = None, reason: str = "",
    ) -> "StepOutcome":
        if not reason and cause is not None:
            reason = f"{type(cause).__name__}: {cause}"
        return cls(StepStatus.TECHNICAL_FAILURE, reason=reason, cause=cause)

    @classmethod
    def exhausted(cls, reason: str) -> "StepOutcome":
        return cls(StepStatus.EXHAUSTED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @property
    def is_logical(self) -> bool:
        return self.status is StepStatus.LOGICAL_FAILURE

    @property
    def is_technical(self) -> bool:
        return self.status is StepStatus.TECHNICAL_FAILURE


def classify_exception(exc: BaseException) -> TechnicalCause:
    """Name the likely cause of an unexpected exception.

    Args:
        exc: The exception raised by an executor call.

    Returns:
        A :class:`TechnicalCause` for diagnostics.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TechnicalCause.TIMEOUT

    error_msg = str(exc).lower()

    # Browser context closed errors
    if "closed" in error_msg and any(
        term in error_msg for term in [
            "target", "context", "browser", "page",
            "connection", "session",
        ]
    ):
        return TechnicalCause.BROWSER_CLOSED

    if any(
        term in error_msg for term in [
            "timeout", "timed out",
        ]
    ):
        return TechnicalCause.TIMEOUT

    if isinstance(exc, ConnectionError) or any(
        term in error_msg for term in [
            "connection reset", "connection refused",
            "net::err", "ns_error",
        ]
    ):
        return TechnicalCause.CONNECTION

    if any(
        term in error_msg for term in [
            "not found", "no element", "waiting for selector",
            "waiting for locator",
        ]
    ):
        return TechnicalCause.MISSING_ELEMENT

    return TechnicalCause.UNKNOWN


async def invoke(
    call: Awaitable[Any], timeout: Optional[float] = None,
) -> StepOutcome:
    """Await an executor call and fold its result into a :class:`StepOutcome`.

    ``LogicalFailure`` becomes a logical outcome.  A timeout,
    ``TechnicalFailure`` or any other exception becomes a technical
    outcome.  Cancellation is not caught.

    Args:
        call: Awaitable returned by an executor method.
        timeout: Seconds before the call is abandoned; ``None`` waits
            indefinitely.

    Returns:
        The folded outcome.
    """
    try:
        if timeout is not None:
            value = await asyncio.wait_for(call, timeout=timeout)
        else:
            value = await call
    except LogicalFailure as e:
        return StepOutcome.logical(str(e) or type(e).__name__)
    except asyncio.TimeoutError as e:
        return StepOutcome.technical(
            e, reason=f"timed out after {timeout}s",
        )
    except Exception as e:
        logger.debug(
            "Executor call failed (%s): %s",
            classify_exception(e).value, e,
        )
        return StepOutcome.technical(e)
    return StepOutcome.success(value)
