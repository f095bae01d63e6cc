"""Transaction coordinator: commit / rollback, classification, post-commit tasks."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from fleet.domain.enums import DispatchPhase, IsolationLevel, VehicleStatus
from fleet.domain.errors import ConcurrencyConflict, PreconditionFailed
from fleet.infrastructure.models import VehicleModel
from fleet.infrastructure.transaction import (
    Operation,
    TransactionCoordinator,
    _dialect_level,
)
from tests.conftest import count, fetch, vehicle_row


class SerializationFailure(Exception):
    sqlstate = "40001"


class TestCommitAndRollback:
    @pytest.mark.asyncio
    async def test_commit_persists(self, coordinator, session_factory):
        async with coordinator.transaction() as tx:
            tx.session.add(vehicle_row(license_plate="TX-1"))
        assert await count(session_factory, VehicleModel) == 1

    @pytest.mark.asyncio
    async def test_exception_rolls_back_everything(self, coordinator, session_factory, vehicle):
        with pytest.raises(ValueError):
            async with coordinator.transaction() as tx:
                locked = await tx.locks.acquire(vehicle_id=vehicle.id)
                locked.vehicle.status = VehicleStatus.IN_SHOP
                tx.session.add(vehicle_row(license_plate="TX-2"))
                await tx.session.flush()
                raise ValueError("boom")

        assert await count(session_factory, VehicleModel) == 1
        fresh = await fetch(session_factory, VehicleModel, vehicle.id)
        assert fresh.status == VehicleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_storage_error_is_classified(self, coordinator):
        failure = OperationalError("COMMIT", {}, SerializationFailure("could not serialize"))
        with pytest.raises(ConcurrencyConflict) as exc_info:
            async with coordinator.transaction():
                raise failure
        assert exc_info.value.reason == "CONCURRENT_MODIFICATION"
        assert exc_info.value.__cause__ is failure

    @pytest.mark.asyncio
    async def test_isolation_level_is_recorded(self, coordinator):
        async with coordinator.transaction(IsolationLevel.SERIALIZABLE) as tx:
            assert tx.isolation == IsolationLevel.SERIALIZABLE
        async with coordinator.transaction() as tx:
            assert tx.isolation == IsolationLevel.READ_COMMITTED


class TestOperationTracking:
    @pytest.mark.asyncio
    async def test_committed_operation_history(self, coordinator):
        async with coordinator.transaction() as tx:
            op = tx.begin("noop", trip_id=1)
            op.advance(DispatchPhase.LOCKING)
            op.advance(DispatchPhase.LOCKING)
        assert op.phase == DispatchPhase.COMMITTED
        assert op.history == [
            DispatchPhase.VALIDATING,
            DispatchPhase.LOCKING,
            DispatchPhase.COMMITTED,
        ]

    @pytest.mark.asyncio
    async def test_abort_stamps_failing_phase(self, coordinator):
        with pytest.raises(PreconditionFailed) as exc_info:
            async with coordinator.transaction() as tx:
                op = tx.begin("guarded")
                op.advance(DispatchPhase.GUARDING)
                raise PreconditionFailed("CARGO_EXCEEDS_CAPACITY")
        assert exc_info.value.phase == DispatchPhase.GUARDING
        assert op.phase == DispatchPhase.ABORTED

    def test_first_phase_wins(self):
        err = PreconditionFailed("X")
        inner = Operation("inner")
        inner.advance(DispatchPhase.MUTATING)
        inner.aborted(err)
        Operation("outer").aborted(err)
        assert err.phase == DispatchPhase.MUTATING


class TestPostCommit:
    @pytest.mark.asyncio
    async def test_runs_once_after_commit(self, coordinator, session_factory):
        seen = []

        async with coordinator.transaction() as tx:
            tx.session.add(vehicle_row(license_plate="PC-1"))

            async def task():
                # Committed data is visible from a fresh session.
                seen.append(await count(session_factory, VehicleModel))

            tx.after_commit("count", task)
            assert seen == []

        assert seen == [1]
        await tx.run_post_commit()
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_skipped_on_rollback(self, coordinator):
        seen = []

        async def task():
            seen.append(True)

        with pytest.raises(RuntimeError):
            async with coordinator.transaction() as tx:
                tx.after_commit("never", task)
                raise RuntimeError("abort")
        assert seen == []

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, coordinator):
        seen = []

        async def broken():
            raise RuntimeError("alert sink down")

        async def healthy():
            seen.append("ran")

        async with coordinator.transaction() as tx:
            tx.after_commit("broken", broken)
            tx.after_commit("healthy", healthy)
        assert seen == ["ran"]


class TestDialectLevel:
    def _session(self, dialect):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = dialect
        return session

    def test_postgres_uses_requested_level(self):
        session = self._session("postgresql")
        assert _dialect_level(session, IsolationLevel.SERIALIZABLE) == "SERIALIZABLE"
        assert _dialect_level(session, IsolationLevel.READ_COMMITTED) == "READ COMMITTED"

    def test_sqlite_is_always_serializable(self):
        session = self._session("sqlite")
        assert _dialect_level(session, IsolationLevel.READ_COMMITTED) == "SERIALIZABLE"

    def test_default_isolation_is_configurable(self, session_factory):
        coordinator = TransactionCoordinator(
            session_factory, default_isolation=IsolationLevel.REPEATABLE_READ
        )
        assert coordinator.default_isolation == IsolationLevel.REPEATABLE_READ
