"""Tests for VideoJobReconciler.

Covers the reconcile state machine, failure isolation in batches, and the
compare-and-set behaviour that keeps concurrent reconciliations from
overwriting terminal states or moving progress backwards.
"""

import asyncio
from datetime import timedelta

import httpx
import pytest

from veostudio.core.dependencies import build_video_services
from veostudio.core.timezone import utcnow
from veostudio.models import VideoJobStatus
from veostudio.services.video_generation import VideoJobReconciler


@pytest.fixture
def reconciler(settings, uow_factory, vertex_transport) -> VideoJobReconciler:
    _, reconciler = build_video_services(settings, uow_factory, transport=vertex_transport)
    return reconciler


async def load(uow_factory, job_id):
    async with await uow_factory() as uow:
        return await uow.video_jobs.get_by_id(job_id)


class TestReconcile:
    @pytest.mark.asyncio
    async def test_missing_job_returns_none(self, reconciler):
        assert await reconciler.reconcile("vid_missing") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, result_uri",
        [
            (VideoJobStatus.COMPLETED, "gs://x/done.mp4"),
            (VideoJobStatus.FAILED, None),
            (VideoJobStatus.QUEUED, None),
        ],
    )
    async def test_non_processing_job_is_a_noop(
        self, reconciler, make_job, uow_factory, fake_vertex, status, result_uri
    ):
        job = await make_job(
            status=status,
            progress=100 if result_uri else 10,
            operation_handle="op-terminal",
            result_uri=result_uri,
            completed_at=utcnow() if result_uri else None,
            error_message="Upstream rejected" if status == VideoJobStatus.FAILED else None,
        )
        before = (await load(uow_factory, job.id)).model_dump()

        result = await reconciler.reconcile(job.id)

        assert result is not None
        assert result.model_dump() == before
        assert (await load(uow_factory, job.id)).model_dump() == before
        assert fake_vertex.requests == []

    @pytest.mark.asyncio
    async def test_stale_job_without_handle_fails_without_upstream_call(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        fake_vertex.token_status = 500
        job = await make_job(operation_handle=None, age=timedelta(hours=1, minutes=1))

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.FAILED
        assert fake_vertex.requests == []
        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.FAILED
        assert stored.result_uri is None
        assert stored.completed_at is None

    @pytest.mark.asyncio
    async def test_recent_job_without_handle_keeps_waiting(
        self, reconciler, make_job, fake_vertex
    ):
        job = await make_job(operation_handle=None, age=timedelta(minutes=59))

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.PROCESSING
        assert result.progress == 10
        assert fake_vertex.requests == []

    @pytest.mark.asyncio
    async def test_no_token_leaves_job_unchanged(self, reconciler, make_job, fake_vertex):
        fake_vertex.token_status = 503
        job = await make_job(progress=40)

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.PROCESSING
        assert result.progress == 40
        assert fake_vertex.requests_to(":fetchPredictOperation") == []

    @pytest.mark.asyncio
    async def test_running_operation_advances_progress_then_completes(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        job = await make_job(operation_handle="op-123", progress=10)

        fake_vertex.operations["op-123"] = {"name": "op-123", "done": False}
        first = await reconciler.reconcile(job.id)
        assert first.status == VideoJobStatus.PROCESSING
        assert first.progress == 12
        assert (await load(uow_factory, job.id)).progress == 12

        fake_vertex.operations["op-123"] = {
            "done": True,
            "response": {"videos": [{"gcsUri": "gs://x/y.mp4"}]},
        }
        second = await reconciler.reconcile(job.id)

        assert second.status == VideoJobStatus.COMPLETED
        assert second.progress == 100
        assert second.result_uri == "gs://x/y.mp4"
        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.COMPLETED
        assert stored.result_uri == "gs://x/y.mp4"
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_inline_video_becomes_data_uri(self, reconciler, make_job, fake_vertex):
        job = await make_job(operation_handle="op-inline")
        fake_vertex.operations["op-inline"] = {
            "done": True,
            "response": {"videos": [{"bytesBase64Encoded": "AAAAGGZ0eXA="}]},
        }

        result = await reconciler.reconcile(job.id)

        assert result.result_uri == "data:video/mp4;base64,AAAAGGZ0eXA="

    @pytest.mark.asyncio
    async def test_progress_is_capped_below_completion(self, reconciler, make_job):
        job = await make_job(progress=98)

        assert (await reconciler.reconcile(job.id)).progress == 99
        assert (await reconciler.reconcile(job.id)).progress == 99

    @pytest.mark.asyncio
    async def test_transient_error_keeps_waiting(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        job = await make_job(operation_handle="op-busy", progress=30)
        fake_vertex.operations["op-busy"] = {
            "done": False,
            "error": {"code": 8, "message": "The model is under high load"},
        }

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.PROCESSING
        assert result.progress == 30
        assert (await load(uow_factory, job.id)).progress == 30

    @pytest.mark.asyncio
    async def test_done_with_error_fails(self, reconciler, make_job, uow_factory, fake_vertex):
        job = await make_job(operation_handle="op-blocked")
        fake_vertex.operations["op-blocked"] = {
            "done": True,
            "error": {"code": 3, "message": "Prompt violates usage guidelines"},
        }

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.FAILED
        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.FAILED
        assert stored.result_uri is None
        assert "usage guidelines" in stored.error_message

    @pytest.mark.asyncio
    async def test_transient_code_after_done_fails(self, reconciler, make_job, fake_vertex):
        job = await make_job(operation_handle="op-late")
        fake_vertex.operations["op-late"] = {
            "done": True,
            "error": {"code": 8, "message": "Resource exhausted"},
        }

        assert (await reconciler.reconcile(job.id)).status == VideoJobStatus.FAILED

    @pytest.mark.asyncio
    async def test_non_transient_error_while_running_fails(
        self, reconciler, make_job, fake_vertex
    ):
        job = await make_job(operation_handle="op-invalid")
        fake_vertex.operations["op-invalid"] = {
            "done": False,
            "error": {"code": 3, "message": "Invalid argument"},
        }

        assert (await reconciler.reconcile(job.id)).status == VideoJobStatus.FAILED

    @pytest.mark.asyncio
    async def test_done_without_artifact_fails(self, reconciler, make_job, fake_vertex):
        job = await make_job(operation_handle="op-empty")
        fake_vertex.operations["op-empty"] = {"done": True, "response": {"videos": []}}

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.FAILED
        assert result.result_uri is None

    @pytest.mark.asyncio
    async def test_malformed_response_keeps_waiting(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        job = await make_job(operation_handle="op-html", progress=20)
        fake_vertex.operations["op-html"] = httpx.Response(
            502, text="<html>Bad Gateway</html>", headers={"content-type": "text/html"}
        )

        result = await reconciler.reconcile(job.id)

        assert result.status == VideoJobStatus.PROCESSING
        assert result.progress == 20
        assert (await load(uow_factory, job.id)).status == VideoJobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_network_error_returns_none_and_keeps_state(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        job = await make_job(operation_handle="op-down", progress=50)
        fake_vertex.operations["op-down"] = httpx.ConnectError("connection reset")

        assert await reconciler.reconcile(job.id) is None

        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.PROCESSING
        assert stored.progress == 50

    @pytest.mark.asyncio
    async def test_owner_scoping(self, reconciler, make_job):
        job = await make_job(owner_id="user-1")

        assert await reconciler.reconcile(job.id, owner_id="intruder") is None
        assert await reconciler.reconcile(job.id, owner_id="user-1") is not None

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, reconciler, make_job, uow_factory):
        job = await make_job(progress=10)

        seen = []
        for _ in range(5):
            seen.append((await reconciler.reconcile(job.id)).progress)

        assert seen == sorted(seen)
        assert seen[-1] == 20
        assert (await load(uow_factory, job.id)).progress == 20


class TestConcurrentReconciliation:
    @pytest.mark.asyncio
    async def test_stale_progress_write_cannot_overwrite_completion(
        self, settings, uow_factory, make_job, fake_vertex, vertex_transport
    ):
        """A reconciler that read 'processing' before another completed the job loses its write."""
        job = await make_job(operation_handle="op-race", progress=40)
        _, reconciler = build_video_services(settings, uow_factory, transport=vertex_transport)

        # Reconciler A reads the job, then B completes it before A writes
        stale_view = await load(uow_factory, job.id)
        fake_vertex.operations["op-race"] = {
            "done": True,
            "response": {"videos": [{"gcsUri": "gs://x/race.mp4"}]},
        }
        completed = await reconciler.reconcile(job.id)
        assert completed.status == VideoJobStatus.COMPLETED

        stale_view.advance_progress()
        result = await reconciler._persist(stale_view, require_progress_increase=True)

        assert result.status == VideoJobStatus.COMPLETED
        assert result.result_uri == "gs://x/race.mp4"
        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.COMPLETED
        assert stored.progress == 100

    @pytest.mark.asyncio
    async def test_concurrent_polls_of_same_job_stay_consistent(
        self, reconciler, make_job, uow_factory, fake_vertex
    ):
        job = await make_job(operation_handle="op-shared", progress=10)
        fake_vertex.operations["op-shared"] = {
            "done": True,
            "response": {"videos": [{"gcsUri": "gs://x/shared.mp4"}]},
        }

        results = await asyncio.gather(*(reconciler.reconcile(job.id) for _ in range(3)))

        assert all(r.status == VideoJobStatus.COMPLETED for r in results)
        stored = await load(uow_factory, job.id)
        assert stored.status == VideoJobStatus.COMPLETED
        assert stored.result_uri == "gs://x/shared.mp4"
        assert stored.progress == 100


class TestReconcileMany:
    @pytest.mark.asyncio
    async def test_empty_input(self, reconciler):
        assert await reconciler.reconcile_many([]) == []

    @pytest.mark.asyncio
    async def test_only_first_five_distinct_ids_are_processed(
        self, reconciler, make_job, uow_factory
    ):
        jobs = [await make_job(operation_handle=f"op-{i}") for i in range(7)]
        ids = [job.id for job in jobs]

        results = await reconciler.reconcile_many([ids[0], ids[0]] + ids[1:])

        assert [r.id for r in results] == ids[:5]
        for job_id in ids[:5]:
            assert (await load(uow_factory, job_id)).progress == 12
        for job_id in ids[5:]:
            assert (await load(uow_factory, job_id)).progress == 10

    @pytest.mark.asyncio
    async def test_one_failing_poll_does_not_affect_others(
        self, reconciler, make_job, fake_vertex
    ):
        jobs = [await make_job(operation_handle=f"op-{i}") for i in range(4)]
        fake_vertex.operations["op-2"] = httpx.ReadTimeout("poll timed out")
        fake_vertex.operations["op-3"] = {
            "done": True,
            "response": {"videos": [{"gcsUri": "gs://x/3.mp4"}]},
        }

        results = await reconciler.reconcile_many([job.id for job in jobs])

        assert [r.id for r in results] == [jobs[0].id, jobs[1].id, jobs[3].id]
        assert results[0].progress == 12
        assert results[2].status == VideoJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_missing_and_foreign_ids_are_filtered(self, reconciler, make_job):
        mine = await make_job(owner_id="user-1")
        theirs = await make_job(owner_id="user-2")

        results = await reconciler.reconcile_many(
            ["vid_missing", mine.id, theirs.id], owner_id="user-1"
        )

        assert [r.id for r in results] == [mine.id]

    @pytest.mark.asyncio
    async def test_batch_uses_injected_clock_for_staleness(self, uow_factory, make_job, settings):
        job = await make_job(operation_handle=None, age=timedelta(minutes=10))
        _, base = build_video_services(settings, uow_factory)
        reconciler = VideoJobReconciler(
            uow_factory=uow_factory,
            credentials=base.credentials,
            veo_client=base.veo_client,
            clock=lambda: utcnow() + timedelta(hours=2),
        )

        results = await reconciler.reconcile_many([job.id])

        assert results[0].status == VideoJobStatus.FAILED
