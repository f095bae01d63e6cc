"""
Transaction coordinator.

``TransactionCoordinator.transaction(isolation)`` opens one session, pins
the isolation level on its connection, yields a ``TransactionContext``,
commits on success and rolls back on any exception.  The session (and
with it every row lock) is released on every exit path.

Storage failures are classified before they leave the block, so callers
only ever see ``DispatchError`` subclasses for expected races.

Post-commit tasks registered with ``TransactionContext.after_commit`` run
once, after a successful commit, outside the transaction; their failures
are logged and swallowed.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .conflicts import classify_storage_error
from .locks import LockCoordinator
from fleet.domain.enums import DispatchPhase, IsolationLevel
from fleet.domain.errors import DispatchError

logger = logging.getLogger(__name__)

PostCommitTask = Callable[[], Awaitable[None]]


class Operation:
    """Tracks one protocol operation through its phases."""

    def __init__(self, name: str, **context):
        self.name = name
        self.context = context
        self.phase = DispatchPhase.VALIDATING
        self.history = [DispatchPhase.VALIDATING]

    def advance(self, phase: DispatchPhase) -> None:
        if phase != self.phase:
            self.phase = phase
            self.history.append(phase)

    def committed(self) -> None:
        self.advance(DispatchPhase.COMMITTED)
        logger.info("%s committed %s", self.name, self.context)

    def aborted(self, error: BaseException) -> None:
        failed_in = self.phase
        self.advance(DispatchPhase.ABORTED)
        if isinstance(error, DispatchError):
            if error.phase is None:
                error.phase = failed_in
            logger.info(
                "%s aborted during %s: %s %s",
                self.name, failed_in.value, error.reason, self.context,
            )


class TransactionContext:
    """Handle passed explicitly to every core function."""

    def __init__(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker,
        isolation: IsolationLevel,
        *,
        lock_nowait: bool = True,
    ):
        self.session = session
        self.session_factory = session_factory
        self.isolation = isolation
        self.locks = LockCoordinator(session, nowait=lock_nowait)
        self.operations: list[Operation] = []
        self._post_commit: list[tuple[str, PostCommitTask]] = []

    def begin(self, name: str, **context) -> Operation:
        op = Operation(name, **context)
        self.operations.append(op)
        return op

    def after_commit(self, name: str, task: PostCommitTask) -> None:
        self._post_commit.append((name, task))

    async def run_post_commit(self) -> None:
        tasks, self._post_commit = self._post_commit, []
        for name, task in tasks:
            try:
                await task()
            except Exception:
                logger.exception("Post-commit task %s failed", name)


class TransactionCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        default_isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
        lock_nowait: bool = True,
    ):
        self.session_factory = session_factory
        self.default_isolation = default_isolation
        self.lock_nowait = lock_nowait

    @asynccontextmanager
    async def transaction(
        self, isolation: IsolationLevel | None = None
    ) -> AsyncIterator[TransactionContext]:
        level = IsolationLevel(isolation or self.default_isolation)
        async with self.session_factory() as session:
            tx = TransactionContext(
                session, self.session_factory, level, lock_nowait=self.lock_nowait
            )
            try:
                await session.connection(
                    execution_options={"isolation_level": _dialect_level(session, level)}
                )
                yield tx
                await session.commit()
            except (DBAPIError, StaleDataError) as exc:
                await session.rollback()
                error = classify_storage_error(exc)
                _abort(tx, error)
                raise error from exc
            except BaseException as exc:
                await session.rollback()
                _abort(tx, exc)
                raise

        for op in tx.operations:
            op.committed()
        await tx.run_post_commit()


def _abort(tx: TransactionContext, error: BaseException) -> None:
    for op in tx.operations:
        op.aborted(error)


def _dialect_level(session: AsyncSession, level: IsolationLevel) -> str:
    # SQLite only offers serializable semantics.
    if session.get_bind().dialect.name == "sqlite":
        return IsolationLevel.SERIALIZABLE.value
    return level.value
