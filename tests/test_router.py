"""Tests for the storage router."""

from __future__ import annotations

import pytest

from levelup_storage.backends import EntityFamily, ListOptions
from levelup_storage.entitlement import EntitlementResolver, SubscriptionPlan
from levelup_storage.exceptions import (
    EntitlementNotLoadedError,
    NotEntitledError,
    TransientRemoteError,
    ValidationError,
)
from levelup_storage.identity import AuthenticationRequiredError, StaticIdentityProvider
from levelup_storage.storage import StaticConnectivity, StorageRouter


class TestRouterLifecycle:
    """Tests for router initialization."""

    @pytest.mark.asyncio
    async def test_initialize_loads_plan(self, make_router, remote_backend) -> None:
        router = await make_router("premium")

        assert router.current_plan == SubscriptionPlan.PREMIUM
        assert remote_backend.plan_lookups == 1

    @pytest.mark.asyncio
    async def test_signed_out_user(self, local_backend, remote_backend) -> None:
        identity = StaticIdentityProvider("user-1")
        await identity.sign_out()
        router = StorageRouter(
            local=local_backend,
            remote=remote_backend,
            entitlements=EntitlementResolver(remote_backend),
            identity=identity,
            connectivity=StaticConnectivity(),
        )

        with pytest.raises(AuthenticationRequiredError):
            await router.initialize()

    @pytest.mark.asyncio
    async def test_write_before_initialize(self, local_backend, remote_backend) -> None:
        router = StorageRouter(
            local=local_backend,
            remote=remote_backend,
            entitlements=EntitlementResolver(remote_backend),
            identity=StaticIdentityProvider("user-1"),
            connectivity=StaticConnectivity(),
        )

        with pytest.raises(EntitlementNotLoadedError):
            await router.save_progress_tracking("2026-01-01", "body_weight", 80.0, "kg")

    @pytest.mark.asyncio
    async def test_close_closes_both_backends(self, make_router, remote_backend) -> None:
        router = await make_router("free")
        await router.close()

        assert remote_backend.closed is True
        assert router.local.conn is None


class TestTierExclusiveWrites:
    """Every write lands in exactly one store, chosen by the plan."""

    @pytest.mark.asyncio
    async def test_free_writes_local_only(
        self, make_router, local_backend, remote_backend, user_id
    ) -> None:
        router = await make_router("free")

        session_id = await router.save_workout_session(
            routine_id="push-day", session_date="2024-01-01", start_time="07:00"
        )

        [local_session] = await local_backend.list_workout_sessions(user_id)
        assert local_session.id == session_id
        assert local_session.synced is False
        assert remote_backend.records(EntityFamily.WORKOUT_SESSION) == []
        assert remote_backend.insert_calls == []

    @pytest.mark.asyncio
    async def test_paid_writes_remote_only(
        self, make_router, local_backend, remote_backend
    ) -> None:
        router = await make_router("pro")

        session_id = await router.save_workout_session(
            routine_id="push-day", session_date="2024-01-01", start_time="07:00"
        )
        progress_id = await router.save_progress_tracking("2024-01-01", "body_weight", 81.2, "kg")

        assert [s.id for s in remote_backend.records(EntityFamily.WORKOUT_SESSION)] == [
            session_id
        ]
        assert [p.id for p in remote_backend.records(EntityFamily.PROGRESS_TRACKING)] == [
            progress_id
        ]
        stats = await local_backend.get_storage_stats()
        assert stats.sessions == 0
        assert stats.progress == 0

    @pytest.mark.asyncio
    async def test_routing_follows_refresh(
        self, make_router, local_backend, remote_backend, user_id
    ) -> None:
        router = await make_router("free")
        local_id = await router.save_progress_tracking("2026-01-01", "waist", 90.0, "cm")

        remote_backend.plans[user_id] = "pro"
        await router.refresh_subscription()
        remote_id = await router.save_progress_tracking("2026-01-02", "waist", 89.5, "cm")

        assert [p.id for p in await local_backend.list_progress_tracking(user_id)] == [local_id]
        assert [p.id for p in remote_backend.records(EntityFamily.PROGRESS_TRACKING)] == [
            remote_id
        ]

    @pytest.mark.asyncio
    async def test_paid_offline_write_fails_without_local_fallback(
        self, make_router, local_backend, remote_backend
    ) -> None:
        router = await make_router("pro", online=False)
        remote_backend.online = False

        with pytest.raises(TransientRemoteError) as exc_info:
            await router.save_progress_tracking("2026-01-01", "body_weight", 80.0, "kg")

        assert exc_info.value.retryable is True
        assert remote_backend.records(EntityFamily.PROGRESS_TRACKING) == []
        stats = await local_backend.get_storage_stats()
        assert stats.progress == 0

    @pytest.mark.asyncio
    async def test_plan_lookup_failure_writes_locally(
        self, make_router, local_backend, remote_backend
    ) -> None:
        remote_backend.plan_error = TransientRemoteError("timeout")
        router = await make_router("premium")

        await router.save_progress_tracking("2026-01-01", "body_weight", 80.0, "kg")

        assert router.current_plan == SubscriptionPlan.FREE
        assert (await local_backend.get_storage_stats()).progress == 1
        assert remote_backend.insert_calls == []

    @pytest.mark.asyncio
    async def test_invalid_write_reaches_no_store(
        self, make_router, local_backend, remote_backend
    ) -> None:
        router = await make_router("free")

        with pytest.raises(ValidationError):
            await router.save_exercise_log(
                session_id="s1",
                exercise_id="squat",
                order_performed=0,
                sets_completed=2,
                reps_performed=[5, 5],
                weight_used_kg=[100.0],
            )

        assert (await local_backend.get_storage_stats()).exercises == 0
        assert remote_backend.insert_calls == []


    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan", ["free", "pro"])
    async def test_order_performed_unique_per_session(self, make_router, plan) -> None:
        router = await make_router(plan)
        session_id = await router.save_workout_session("legs", "2026-02-01", "10:00")
        log_fields = {
            "session_id": session_id,
            "order_performed": 0,
            "sets_completed": 1,
            "reps_performed": [5],
            "weight_used_kg": [100.0],
        }
        await router.save_exercise_log(exercise_id="squat", **log_fields)

        with pytest.raises(ValidationError) as exc_info:
            await router.save_exercise_log(exercise_id="deadlift", **log_fields)

        assert exc_info.value.field == "order_performed"
        logs = await router.get_exercise_logs_by_session(session_id)
        assert [log.exercise_id for log in logs] == ["squat"]


class TestRoutedReads:
    """Tests for list operations through the router."""

    @pytest.mark.asyncio
    async def test_remote_exercise_log_sequences(self, make_router) -> None:
        router = await make_router("premium")
        session_id = await router.save_workout_session("legs", "2026-02-01", "10:00")
        await router.save_exercise_log(
            session_id=session_id,
            exercise_id="squat",
            order_performed=0,
            sets_completed=3,
            reps_performed=[5, 5, 3],
            weight_used_kg=[100.0, 105.0, 110.0],
            rest_time_seconds=[180, 180, 240],
        )

        [log] = await router.get_exercise_logs_by_session(session_id)

        assert log.reps_performed == [5, 5, 3]
        assert log.weight_used_kg == [100.0, 105.0, 110.0]
        assert log.rest_time_seconds == [180, 180, 240]

    @pytest.mark.asyncio
    async def test_local_exercise_logs_by_session(self, make_router) -> None:
        router = await make_router("free")
        session_id = await router.save_workout_session("legs", "2026-02-01", "10:00")
        for order, exercise in [(1, "lunge"), (0, "squat")]:
            await router.save_exercise_log(
                session_id=session_id,
                exercise_id=exercise,
                order_performed=order,
                sets_completed=1,
                reps_performed=[8],
                weight_used_kg=[40.0],
            )

        logs = await router.get_exercise_logs_by_session(session_id)
        listed = await router.list_exercise_logs(ListOptions(session_id=session_id))

        assert [log.exercise_id for log in logs] == ["squat", "lunge"]
        assert [log.id for log in listed] == [log.id for log in logs]

    @pytest.mark.asyncio
    async def test_reads_follow_plan(self, make_router, remote_backend, records, user_id) -> None:
        remote_backend.seed(user_id, records.session(id="cloud-session"))
        router = await make_router("free")
        await router.save_workout_session("push-day", "2026-01-01", "07:00")

        local_sessions = await router.list_workout_sessions()
        remote_backend.plans[user_id] = "pro"
        await router.refresh_subscription()
        remote_sessions = await router.list_workout_sessions()

        assert "cloud-session" not in [s.id for s in local_sessions]
        assert [s.id for s in remote_sessions] == ["cloud-session"]

    @pytest.mark.asyncio
    async def test_progress_metric_filter(self, make_router) -> None:
        router = await make_router("free")
        await router.save_progress_tracking("2026-01-01", "body_weight", 80.0, "kg")
        await router.save_progress_tracking("2026-01-01", "waist", 90.0, "cm")

        rows = await router.list_progress_tracking(ListOptions(metric_type="waist"))

        assert [r.metric_type for r in rows] == ["waist"]

    @pytest.mark.asyncio
    async def test_unsupported_filter_rejected(self, make_router, remote_backend) -> None:
        router = await make_router("pro")

        with pytest.raises(ValidationError):
            await router.list_workout_sessions(ListOptions(metric_type="body_weight"))
        with pytest.raises(ValidationError):
            await router.list_exercise_logs(ListOptions(limit=-1))


class TestSyncStatusAndMaintenance:
    """Tests for status reporting, clearing and the migration entry point."""

    @pytest.mark.asyncio
    async def test_free_status(self, make_router) -> None:
        router = await make_router("free")
        await router.save_progress_tracking("2026-01-01", "body_weight", 80.0, "kg")

        status = await router.get_sync_status()

        assert status.to_dict() == {
            "is_online": True,
            "can_sync_to_cloud": False,
            "local_storage_enabled": True,
            "unsynced_count": 1,
        }

    @pytest.mark.asyncio
    async def test_paid_status_offline(self, make_router) -> None:
        router = await make_router("pro", online=False)

        status = await router.get_sync_status()

        assert status.is_online is False
        assert status.can_sync_to_cloud is False
        assert status.local_storage_enabled is False

    @pytest.mark.asyncio
    async def test_paid_status_online(self, make_router) -> None:
        router = await make_router("premium")

        status = await router.get_sync_status()

        assert status.can_sync_to_cloud is True

    @pytest.mark.asyncio
    async def test_clear_local_data_free(self, make_router, local_backend) -> None:
        router = await make_router("free")
        await router.save_workout_session("push-day", "2026-01-01", "07:00")

        assert await router.clear_local_data() is True
        assert (await router.get_storage_stats()).sessions == 0

    @pytest.mark.asyncio
    async def test_clear_local_data_refused_for_paid(
        self, make_router, local_backend, records, user_id
    ) -> None:
        await local_backend.save_workout_session(user_id, records.session())
        router = await make_router("pro")

        assert await router.clear_local_data() is False
        assert (await local_backend.get_storage_stats()).sessions == 1

    @pytest.mark.asyncio
    async def test_sync_requires_paid_plan(self, make_router, remote_backend) -> None:
        router = await make_router("free")
        await router.save_workout_session("push-day", "2026-01-01", "07:00")

        with pytest.raises(NotEntitledError):
            await router.sync_local_data_to_cloud()
        assert remote_backend.insert_calls == []
