"""
Session Recovery

Restarts a user's bot session after a transport error.

DESIGN DECISION: Restart policy lives outside the registry.
The registry only knows how to restart; this module decides when, how
often and when to give up:

- Concurrent errors for one user coalesce into a single recovery task.
- Delay before each restart is min(base * 2**n, max), n being the number
  of failed restarts so far.
- After `max_failures` consecutive failed restarts within
  `failure_window_seconds`, the session is stopped and marked inactive.
  Only an explicit BotSessionRegistry.start brings it back (and clears
  the history kept here).

Other users' sessions and every user's guided dialog are untouched by
recovery.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type

from expense_bot.audit import AuditLogger
from expense_bot.bot.registry import BotSessionRegistry, RegistryError
from expense_bot.bot.transport import TransportError
from expense_bot.config import RecoverySettings


logger = structlog.get_logger(__name__)


class RecoveryManager:
    """Restart-with-backoff policy for transport failures."""

    def __init__(
        self,
        registry: BotSessionRegistry,
        settings: Optional[RecoverySettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._settings = settings or RecoverySettings()
        self._audit = audit_logger
        self._sleep = sleep
        self._clock = clock
        self._failures: dict[str, deque[float]] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        registry.attach_recovery(self)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def report_error(self, user_id: str, exc: Exception) -> None:
        """
        Note a transport error and schedule recovery. Never blocks.

        A second report while recovery is already running for the user is
        absorbed by the running task.
        """
        running = self._tasks.get(user_id)
        if running is not None and not running.done():
            logger.debug("recovery_coalesced", user_id=user_id, error=str(exc))
            return

        task = asyncio.create_task(self.recover(user_id, exc), name=f"recovery-{user_id}")
        self._tasks[user_id] = task
        task.add_done_callback(lambda t: self._task_done(user_id, t))

    async def recover(self, user_id: str, exc: Exception) -> bool:
        """
        Restart the session until it works or the failure budget is spent.

        Returns True once the session is running again, False if it was
        demoted or has gone away.
        """
        logger.warning("recovery_started", user_id=user_id, error=str(exc))
        await self._sleep(self.backoff_delay(self.failure_count(user_id)))

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransportError),
            wait=lambda retry_state: self.backoff_delay(self.failure_count(user_id)),
            stop=lambda retry_state: self.failure_count(user_id) >= self._settings.max_failures,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._attempt_restart(user_id, attempt.retry_state.attempt_number)
        except TransportError:
            await self._demote(user_id)
            return False
        except RegistryError as e:
            logger.info("recovery_abandoned", user_id=user_id, reason=str(e))
            return False

        self._failures.pop(user_id, None)
        return True

    def reset(self, user_id: str) -> None:
        """Forget failure history and stop any recovery in progress."""
        self._failures.pop(user_id, None)
        task = self._tasks.pop(user_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def shutdown(self) -> None:
        """Cancel every recovery task."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def backoff_delay(self, failures: int) -> float:
        """Delay before the next restart after `failures` failed restarts."""
        base = self._settings.base_delay_seconds
        maximum = self._settings.max_delay_seconds
        # Cap the exponent; 2**n overflows a float long before it matters
        return min(base * 2 ** min(failures, 32), maximum)

    def failure_count(self, user_id: str) -> int:
        """Failed restarts for this user inside the rolling window."""
        failures = self._failures.get(user_id)
        if not failures:
            return 0
        cutoff = self._clock() - self._settings.failure_window_seconds
        while failures and failures[0] <= cutoff:
            failures.popleft()
        return len(failures)

    def is_recovering(self, user_id: str) -> bool:
        task = self._tasks.get(user_id)
        return task is not None and not task.done()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _attempt_restart(self, user_id: str, attempt: int) -> None:
        try:
            info = await self._registry.restart(user_id)
        except TransportError as e:
            self._failures.setdefault(user_id, deque()).append(self._clock())
            logger.warning(
                "restart_failed",
                user_id=user_id,
                attempt=attempt,
                failures=self.failure_count(user_id),
                error=str(e),
            )
            if self._audit:
                await self._audit.log_session_restart_failed(user_id, attempt, str(e))
            raise

        logger.info("restart_succeeded", user_id=user_id, attempt=attempt, generation=info.generation)
        if self._audit:
            await self._audit.log_session_restarted(user_id, info.generation, attempt)

    async def _demote(self, user_id: str) -> None:
        failures = self.failure_count(user_id)
        logger.error("session_demoted", user_id=user_id, failures=failures)
        await self._registry.mark_inactive(user_id)
        if self._audit:
            await self._audit.log_session_inactive(user_id, failures)

    def _task_done(self, user_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(user_id) is task:
            del self._tasks[user_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "recovery_task_failed",
                user_id=user_id,
                error_type=type(error).__name__,
                error=str(error),
            )
