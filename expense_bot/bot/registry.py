"""
Bot Session Registry

Owns one live messaging session per user and feeds its events to the
CommandRouter.

DESIGN DECISION: The session table is an arena.
Workers live in `_slots` (slot index -> SessionWorker) and are found by
user through `_index` (user_id -> slot index). Transport callbacks carry
(slot, generation) instead of a reference to the worker, so a callback
from a handle that has since been released or replaced resolves to
nothing and the event is dropped.

CRITICAL GUARANTEES:
1. At most one session and one live transport per user. Lifecycle calls
   for one user (start, stop, restart, mark_inactive) are serialised by a
   per-user lock held across teardown and transport open; starting a
   session for a user who already has one tears the old one down first.
   A handle that finishes opening after its worker left the table is
   released at once.
2. A user's events are processed strictly in arrival order by a single
   consumer task. Different users never wait on each other.
3. A transport handle is released before its session leaves the table.
4. Restarting a session replaces only the transport. Queued events and
   the user's guided dialog are untouched.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Optional

import structlog

from expense_bot.audit import AuditLogger
from expense_bot.bot.router import CommandRouter
from expense_bot.bot.transport import (
    MessagingTransport,
    TransportConfig,
    TransportError,
    TransportFactory,
)
from expense_bot.models.conversation import (
    BotSessionInfo,
    BotStatus,
    InboundEvent,
    RegistryStats,
)


logger = structlog.get_logger(__name__)

# Queue sentinel: the consumer exits after everything queued before it
_STOP = object()


class RegistryError(Exception):
    """Base exception for session registry operations."""
    pass


class SessionNotFoundError(RegistryError):
    """No session is registered for this user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No bot session for user {user_id}")


class SessionInactiveError(RegistryError):
    """The session was demoted and needs an explicit start."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Bot session for user {user_id} is inactive")


class SessionWorker:
    """One user's session: config, transport handle, inbound queue, consumer."""

    def __init__(self, user_id: str, slot: int, config: TransportConfig, now: datetime):
        self.user_id = user_id
        self.slot = slot
        self.config = config
        self.status = BotStatus.STARTING
        self.generation = 0
        self.transport: Optional[MessagingTransport] = None
        self.accepting = True
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None
        self.last_activity_at = now

    def info(self) -> BotSessionInfo:
        return BotSessionInfo(
            user_id=self.user_id,
            status=self.status,
            generation=self.generation,
            last_activity_at=self.last_activity_at,
            pending_events=self.queue.qsize(),
        )


class BotSessionRegistry:
    """
    Creates, restarts and tears down per-user bot sessions.

    Transport failures are handed to the attached recovery manager, which
    calls back into `restart` and `mark_inactive`.
    """

    def __init__(
        self,
        router: CommandRouter,
        transport_factory: TransportFactory,
        audit_logger: Optional[AuditLogger] = None,
        shutdown_grace_seconds: float = 10.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._router = router
        self._factory = transport_factory
        self._audit = audit_logger
        self._grace = shutdown_grace_seconds
        self._clock = clock
        self._recovery: Optional[Any] = None

        self._slots: dict[int, SessionWorker] = {}
        self._index: dict[str, int] = {}
        self._next_slot = 0
        self._lock = asyncio.Lock()
        # Serialises start/stop/restart/mark_inactive per user
        self._user_locks: dict[str, asyncio.Lock] = {}

    def attach_recovery(self, recovery: Any) -> None:
        """Register the object whose `report_error` and `reset` the registry calls."""
        self._recovery = recovery

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, user_id: str, config: TransportConfig) -> BotSessionInfo:
        """
        Start (or re-start) a user's session with a fresh transport.

        Any existing session for the user, including an inactive one, is
        torn down first and the user's recovery history is cleared.

        Raises:
            TransportError: If the new transport cannot be opened. The
                user is left without a session.
            SessionNotFoundError: If the registry was shut down while the
                transport was opening.
        """
        # Cancelled before waiting: a recovery task may hold the user lock
        self._reset_recovery(user_id)
        async with self._user_lock(user_id):
            async with self._lock:
                old = self._lookup(user_id)
            if old is not None:
                await self._close(old, "replaced", self._grace)
                async with self._lock:
                    self._remove(old)
            self._reset_recovery(user_id)

            async with self._lock:
                worker = self._allocate(user_id, config)
            worker.task = asyncio.create_task(self._consume(worker), name=f"bot-session-{user_id}")
            try:
                transport = await self._open_transport(worker)
            except TransportError:
                await self._close(worker, "start_failed", 0)
                async with self._lock:
                    self._remove(worker)
                raise

            if not self._is_listed(worker):
                await self._discard(worker, transport, "removed_while_starting")
                raise SessionNotFoundError(user_id)
            worker.status = BotStatus.ACTIVE

        logger.info("session_started", user_id=user_id, slot=worker.slot, generation=worker.generation)
        if self._audit:
            await self._audit.log_session_started(user_id, worker.generation)
        return worker.info()

    async def stop(self, user_id: str) -> bool:
        """
        Stop a user's session, remove it and clear its recovery history.

        Returns False if the user had no session.
        """
        self._reset_recovery(user_id)
        async with self._user_lock(user_id):
            async with self._lock:
                worker = self._lookup(user_id)
            if worker is None:
                return False

            await self._close(worker, "stopped", self._grace)
            async with self._lock:
                self._remove(worker)
        self._reset_recovery(user_id)

        logger.info("session_stopped", user_id=user_id)
        if self._audit:
            await self._audit.log_session_stopped(user_id, "stopped")
        return True

    async def restart(self, user_id: str) -> BotSessionInfo:
        """
        Replace a session's transport in place.

        Raises:
            SessionNotFoundError: If the user has no session, or it was
                removed while the new transport was opening
            SessionInactiveError: If the session was demoted
            TransportError: If the new transport cannot be opened; the
                session stays in RESTARTING
        """
        async with self._user_lock(user_id):
            async with self._lock:
                worker = self._lookup(user_id)
            if worker is None:
                raise SessionNotFoundError(user_id)
            if worker.status == BotStatus.INACTIVE:
                raise SessionInactiveError(user_id)

            worker.status = BotStatus.RESTARTING
            await self._release_transport(worker)
            transport = await self._open_transport(worker)

            if not self._is_listed(worker):
                await self._discard(worker, transport, "removed_while_restarting")
                raise SessionNotFoundError(user_id)
            worker.status = BotStatus.ACTIVE

        logger.info("session_restarted", user_id=user_id, generation=worker.generation)
        return worker.info()

    async def mark_inactive(self, user_id: str) -> bool:
        """
        Stop a session but keep it listed as INACTIVE.

        Its transport is released and its consumer stopped; only an
        explicit `start` brings it back. Returns False if unknown.
        """
        async with self._user_lock(user_id):
            async with self._lock:
                worker = self._lookup(user_id)
            if worker is None:
                return False

            await self._close(worker, "inactive", self._grace)
            worker.status = BotStatus.INACTIVE
        logger.warning("session_inactive", user_id=user_id)
        return True

    async def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        """
        Stop every session cooperatively.

        Intake stops at once; each worker finishes the event in hand and
        releases its transport. Workers still busy after the grace period
        are cancelled.
        """
        grace = self._grace if grace_seconds is None else grace_seconds
        if self._recovery is not None:
            await self._recovery.shutdown()

        async with self._lock:
            workers = list(self._slots.values())
            self._slots.clear()
            self._index.clear()

        logger.info("registry_shutdown", sessions=len(workers), grace_seconds=grace)
        await asyncio.gather(*(self._close(w, "shutdown", grace) for w in workers))
        for worker in workers:
            worker.status = BotStatus.INACTIVE
            if self._audit:
                await self._audit.log_session_stopped(worker.user_id, "shutdown")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def stats(self) -> RegistryStats:
        sessions = [w.info() for w in self._slots.values()]
        return RegistryStats(
            total_sessions=len(sessions),
            active_sessions=sum(1 for s in sessions if s.status == BotStatus.ACTIVE),
            sessions=sessions,
        )

    def get(self, user_id: str) -> Optional[BotSessionInfo]:
        worker = self._lookup(user_id)
        return worker.info() if worker else None

    def __len__(self) -> int:
        return len(self._index)

    # -------------------------------------------------------------------------
    # Table bookkeeping (call with the lock held)
    # -------------------------------------------------------------------------

    def _lookup(self, user_id: str) -> Optional[SessionWorker]:
        slot = self._index.get(user_id)
        return self._slots.get(slot) if slot is not None else None

    def _allocate(self, user_id: str, config: TransportConfig) -> SessionWorker:
        slot = self._next_slot
        self._next_slot += 1
        worker = SessionWorker(user_id, slot, config, self._clock())
        self._slots[slot] = worker
        self._index[user_id] = slot
        return worker

    def _remove(self, worker: SessionWorker) -> None:
        self._slots.pop(worker.slot, None)
        if self._index.get(worker.user_id) == worker.slot:
            del self._index[worker.user_id]

    def _is_listed(self, worker: SessionWorker) -> bool:
        return self._index.get(worker.user_id) == worker.slot and self._slots.get(worker.slot) is worker

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        return self._user_locks.setdefault(user_id, asyncio.Lock())

    def _reset_recovery(self, user_id: str) -> None:
        if self._recovery is not None:
            self._recovery.reset(user_id)

    # -------------------------------------------------------------------------
    # Transport handling
    # -------------------------------------------------------------------------

    async def _open_transport(self, worker: SessionWorker) -> MessagingTransport:
        worker.generation += 1
        slot, generation = worker.slot, worker.generation
        transport = self._factory(worker.config)
        worker.transport = transport
        await transport.start(
            on_event=lambda event: self._dispatch(slot, generation, event),
            on_error=lambda exc: self._transport_failed(slot, generation, exc),
        )
        return transport

    async def _release_transport(self, worker: SessionWorker) -> None:
        transport, worker.transport = worker.transport, None
        # Callbacks still in flight from this handle are now stale
        worker.generation += 1
        if transport is not None:
            await self._stop_handle(worker, transport)

    async def _stop_handle(self, worker: SessionWorker, transport: MessagingTransport) -> None:
        try:
            await transport.stop()
        except TransportError as e:
            logger.warning("transport_release_failed", user_id=worker.user_id, error=str(e))

    async def _discard(self, worker: SessionWorker, transport: MessagingTransport, reason: str) -> None:
        """Release a handle that finished opening after its worker left the table."""
        attached = worker.transport is transport
        await self._close(worker, reason, 0)
        if not attached:
            # Stopped by another teardown before its start completed
            await self._stop_handle(worker, transport)
        logger.warning("transport_discarded", user_id=worker.user_id, reason=reason)

    def _resolve(self, slot: int, generation: int) -> Optional[SessionWorker]:
        worker = self._slots.get(slot)
        if worker is None or worker.generation != generation or not worker.accepting:
            return None
        return worker

    def _dispatch(self, slot: int, generation: int, event: InboundEvent) -> None:
        worker = self._resolve(slot, generation)
        if worker is None:
            logger.debug("stale_event_dropped", slot=slot, generation=generation)
            return
        worker.queue.put_nowait(event)

    def _transport_failed(self, slot: int, generation: int, exc: Exception) -> None:
        worker = self._resolve(slot, generation)
        if worker is None or worker.status == BotStatus.RESTARTING:
            return
        logger.warning("transport_failed", user_id=worker.user_id, error=str(exc))
        if self._recovery is not None:
            self._recovery.report_error(worker.user_id, exc)

    # -------------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------------

    async def _consume(self, worker: SessionWorker) -> None:
        while True:
            event = await worker.queue.get()
            try:
                if event is _STOP:
                    return
                await self._process(worker, event)
            finally:
                worker.queue.task_done()

    async def _process(self, worker: SessionWorker, event: InboundEvent) -> None:
        worker.last_activity_at = self._clock()
        generation = worker.generation

        async def reply(text: str) -> None:
            transport = worker.transport
            if transport is None:
                raise TransportError(f"No transport for user {worker.user_id}")
            await transport.send_text(event.chat_id, text)

        try:
            await self._router.route(worker.user_id, event, reply)
        except TransportError as e:
            self._transport_failed(worker.slot, generation, e)

    async def _close(self, worker: SessionWorker, reason: str, grace: float) -> None:
        """Stop intake, let the consumer finish, then release the transport."""
        worker.accepting = False
        task = worker.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            worker.queue.put_nowait(_STOP)
            done, _ = await asyncio.wait({task}, timeout=grace)
            if not done:
                logger.warning("session_worker_cancelled", user_id=worker.user_id, reason=reason)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._release_transport(worker)
        logger.debug("session_closed", user_id=worker.user_id, reason=reason)
