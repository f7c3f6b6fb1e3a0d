"""Tests for the job outbox and worker."""

from uuid import uuid4

from sqlalchemy import func, select

from settlement_engine.database import current_tenant, register_tenant, unregister_tenant
from settlement_engine.models import SystemLog
from settlement_engine.settlement.jobs import JobQueue, JobWorker


def _failing(db, payload):
    raise RuntimeError("boom")


class TestJobQueue:

    def test_enqueue_serializes_payload(self, session, queue):
        raw_id = uuid4()

        job = queue.enqueue("system_log", {"client_id": raw_id, "nested": {"ids": (raw_id,)}})

        assert job.status == "queued"
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.tenant_id == "default"
        assert job.payload == {"client_id": str(raw_id), "nested": {"ids": [str(raw_id)]}}

    def test_pending_filters_by_name(self, queue):
        queue.enqueue("a", {})
        queue.enqueue("b", {})

        assert [job.name for job in queue.pending("b")] == ["b"]
        assert len(queue.pending()) == 2

    def test_explicit_tenant(self, session):
        queue = JobQueue(session, tenant_id="acme", max_attempts=1)

        assert queue.enqueue("a", {}).tenant_id == "acme"
        assert queue.enqueue("b", {}, tenant_id="other").tenant_id == "other"


class TestJobWorker:
    """Jobs run isolated; failures retry until their attempts run out."""

    def test_runs_handler(self, session, queue):
        seen = []
        worker = JobWorker({"greet": lambda db, payload: seen.append(payload["name"])})
        job = queue.enqueue("greet", {"name": "Ada"})

        result = worker.run_pending(session)

        assert seen == ["Ada"]
        assert result.succeeded == 1
        assert job.status == "done"
        assert job.attempts == 1
        assert job.finished_at is not None

    def test_retries_then_fails(self, session, queue):
        worker = JobWorker({"flaky": _failing})
        job = queue.enqueue("flaky", {})

        first = worker.run_pending(session)
        second = worker.run_pending(session)
        third = worker.run_pending(session)

        assert (first.retried, second.retried, third.failed) == (1, 1, 1)
        assert third.failed_job_ids == (job.queued_job_id,)
        assert job.status == "failed"
        assert job.attempts == 3
        assert job.last_error == "RuntimeError: boom"
        assert worker.run_pending(session).processed == 0

    def test_failed_handler_leaves_no_writes(self, session, queue, company):
        def write_then_fail(db, payload):
            db.add(
                SystemLog(company_id=company.company_id, category_id=1, event_id=1, type_id=1)
            )
            db.flush()
            raise RuntimeError("after write")

        worker = JobWorker({"partial": write_then_fail})
        queue.enqueue("partial", {})

        worker.run_pending(session)

        assert session.scalar(select(func.count()).select_from(SystemLog)) == 0

    def test_one_failure_does_not_stop_others(self, session, queue):
        seen = []
        worker = JobWorker({"bad": _failing, "good": lambda db, payload: seen.append(1)})
        queue.enqueue("bad", {})
        queue.enqueue("good", {})

        result = worker.run_pending(session)

        assert result.processed == 2
        assert result.succeeded == 1
        assert result.retried == 1
        assert seen == [1]

    def test_unknown_job_name(self, session):
        queue = JobQueue(session, max_attempts=1)
        job = queue.enqueue("nobody_handles_this", {})

        result = JobWorker().run_pending(session)

        assert result.failed == 1
        assert job.status == "failed"
        assert "No handler registered" in job.last_error

    def test_unregistered_tenant_fails_job(self, session):
        queue = JobQueue(session, tenant_id="ghost", max_attempts=1)
        seen = []
        worker = JobWorker({"touch": lambda db, payload: seen.append(1)})
        job = queue.enqueue("touch", {})

        worker.run_pending(session)

        assert seen == []
        assert job.status == "failed"
        assert job.last_error.startswith("TenantNotFound")

    def test_handler_runs_in_job_tenant(self, session, queue, engine):
        register_tenant("acme", engine=engine)
        try:
            seen = []
            worker = JobWorker({"where": lambda db, payload: seen.append(current_tenant())})
            queue.enqueue("where", {}, tenant_id="acme")

            worker.run_pending(session)
        finally:
            unregister_tenant("acme")

        assert seen == ["acme"]
        assert current_tenant() == "default"

    def test_limit(self, session, queue):
        worker = JobWorker({"noop": lambda db, payload: None})
        for _ in range(3):
            queue.enqueue("noop", {})

        assert worker.run_pending(session, limit=2).processed == 2
        assert len(queue.pending()) == 1

    def test_job_names(self):
        worker = JobWorker()
        worker.register("a", _failing)

        assert worker.job_names == {"a"}

