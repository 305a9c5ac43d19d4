"""Activation email background worker.

Registration enqueues an ActivationRequested event instead of sending mail
inline. The worker consumes the queue on its own asyncio task, issues the
activation token, stores it on the account and sends the activation email.
Started and stopped by the FastAPI lifespan.
"""

import asyncio
import contextlib
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from identity.core.email import send_activation_email
from identity.repositories.account_repository import AccountRepository
from identity.services.token_lifecycle import TokenKind, TokenLifecycleManager

logger = structlog.get_logger()

ActivationSender = Callable[..., Awaitable[None]]


@dataclass(frozen=True)
class ActivationRequested:
    """A newly registered account needs an activation email."""

    account_id: uuid.UUID
    email: str
    name: str


class ActivationWorker:
    """Background worker that turns ActivationRequested events into emails.

    Lifecycle:
    - start() creates an asyncio task that drains the queue.
    - stop() cancels the task; events still queued are dropped.
    - process() handles a single event (for testing).

    Args:
        session_factory: Async session factory for DB access.
        tokens: Token manager issuing activation tokens.
        queue: Event queue. A new one is created when omitted.
        send_email: Activation email sender.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tokens: TokenLifecycleManager,
        *,
        queue: asyncio.Queue[ActivationRequested] | None = None,
        send_email: ActivationSender = send_activation_email,
    ) -> None:
        self._session_factory = session_factory
        self._tokens = tokens
        self._queue: asyncio.Queue[ActivationRequested] = (
            queue if queue is not None else asyncio.Queue()
        )
        self._send_email = send_email
        self._task: asyncio.Task[None] | None = None

    @property
    def queue(self) -> asyncio.Queue[ActivationRequested]:
        return self._queue

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start consuming the queue.

        No-op if already running. Must be called from an async context.
        """
        if self.is_running:
            logger.warning("Activation worker already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Activation worker started")

    async def stop(self) -> None:
        """Cancel the consumer task and wait for it to finish."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if not self._queue.empty():
            logger.warning("Activation events dropped", pending=self._queue.qsize())
        logger.info("Activation worker stopped")

    async def process(self, event: ActivationRequested) -> str | None:
        """Issue, store and email an activation token for one account.

        Returns:
            The issued token, or None if the account no longer exists.
        """
        record = await self._tokens.issue(
            str(event.account_id), TokenKind.EMAIL_ACTIVATION
        )
        async with self._session_factory() as db:
            account = await AccountRepository.update(
                db, event.account_id, email_activation_token=record.token
            )
            if account is None:
                logger.warning("Account vanished before activation")
                await self._tokens.revoke(record.token, TokenKind.EMAIL_ACTIVATION)
                return None
            await db.commit()

        await self._send_email(to_email=event.email, name=event.name, token=record.token)
        logger.info("Activation email sent")
        return record.token

    async def _run_loop(self) -> None:
        """Background loop: queue.get → process → task_done."""
        try:
            while True:
                event = await self._queue.get()
                try:
                    with structlog.contextvars.bound_contextvars(
                        account_id=str(event.account_id)
                    ):
                        await self.process(event)
                except Exception:  # noqa: BLE001
                    logger.exception("Error processing activation event")
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Activation loop cancelled")
            raise


# Singleton instance for the application
_worker: ActivationWorker | None = None


def get_activation_worker() -> ActivationWorker:
    """Get the application's activation worker.

    Raises:
        RuntimeError: Called before the application started.
    """
    if _worker is None:
        msg = "Activation worker not initialized"
        raise RuntimeError(msg)
    return _worker


def set_activation_worker(worker: ActivationWorker | None) -> None:
    """Install (or clear, with None) the application's activation worker."""
    global _worker
    _worker = worker
