from datetime import UTC, datetime

import pytest
from fastapi import BackgroundTasks

from feedback_engine.core.security import AuthContext
from feedback_engine.jobs.errors import DuplicateJobError, InvalidJobStateError, JobAccessDeniedError, JobNotFoundError, SubjectValidationError
from feedback_engine.jobs.models import FeedbackDraft
from feedback_engine.services import jobs as job_service

NOW = datetime(2026, 1, 2, tzinfo=UTC)
ADMIN = AuthContext(user_id="admin-1", is_admin=True)
OWNER = AuthContext(user_id="student-1")
STRANGER = AuthContext(user_id="student-2")


async def _failed_job(jobs_repo, job_factory, **overrides):
  job = await jobs_repo.create_job(job_factory(**overrides))
  await jobs_repo.claim_job(job.job_id, now=NOW)
  return await jobs_repo.update_status(job.job_id, expected="processing", new="failed", now=NOW, completed_at=NOW, error_message="upstream 502")


@pytest.mark.anyio
async def test_submit_creates_pending_job_and_dispatches(settings, jobs_repo, assignments_repo, add_assignment, enqueuer):
  add_assignment("assignment-a", tier="enterprise")

  record = await job_service.submit_job(" assignment-a ", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  assert record.status == "pending"
  assert record.subject_id == "assignment-a"
  assert record.priority == 10
  assert record.attempts == 0
  assert record.max_attempts == 3
  assert record.requester_id == "student-1"
  assert record.metadata == {"submitted_by": "student-1"}
  assert enqueuer.job_ids == [record.job_id]


@pytest.mark.anyio
async def test_submit_schedules_dispatch_as_background_task(settings, jobs_repo, assignments_repo, add_assignment, enqueuer):
  add_assignment("assignment-a")
  background_tasks = BackgroundTasks()

  record = await job_service.submit_job("assignment-a", OWNER, settings, background_tasks, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  assert enqueuer.job_ids == []
  await background_tasks()
  assert enqueuer.job_ids == [record.job_id]


@pytest.mark.anyio
async def test_submit_survives_dispatch_failure(settings, jobs_repo, assignments_repo, add_assignment, failing_enqueuer):
  add_assignment("assignment-a")

  record = await job_service.submit_job("assignment-a", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=failing_enqueuer)

  assert (await jobs_repo.get_job(record.job_id)).status == "pending"


@pytest.mark.anyio
@pytest.mark.parametrize(("subject_id", "status_code"), [(None, 400), ("", 400), ("   ", 400), ("x" * 129, 400), ("unknown", 404), ("draft", 400)])
async def test_submit_rejects_invalid_subjects(settings, jobs_repo, assignments_repo, add_assignment, enqueuer, subject_id, status_code):
  add_assignment("draft", status="draft")

  with pytest.raises(SubjectValidationError) as exc:
    await job_service.submit_job(subject_id, OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  assert exc.value.status_code == status_code
  assert enqueuer.job_ids == []


@pytest.mark.anyio
async def test_submit_enforces_ownership_except_for_admins(settings, jobs_repo, assignments_repo, add_assignment, enqueuer):
  add_assignment("assignment-a")

  with pytest.raises(JobAccessDeniedError):
    await job_service.submit_job("assignment-a", STRANGER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  record = await job_service.submit_job("assignment-a", ADMIN, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)
  assert record.requester_id == "student-1"
  assert record.metadata["submitted_by"] == "admin-1"


@pytest.mark.anyio
async def test_submit_rejects_second_active_job(settings, jobs_repo, assignments_repo, add_assignment, enqueuer):
  add_assignment("assignment-a")
  first = await job_service.submit_job("assignment-a", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  with pytest.raises(DuplicateJobError) as exc:
    await job_service.submit_job("assignment-a", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  assert exc.value.status_code == 409
  assert exc.value.to_detail()["data"]["job_id"] == first.job_id


@pytest.mark.anyio
async def test_retry_resets_failed_job_and_records_audit(settings, jobs_repo, job_factory, enqueuer):
  failed = await _failed_job(jobs_repo, job_factory)

  retried = await job_service.retry_job(failed.job_id, ADMIN, settings, jobs_repo=jobs_repo, enqueuer=enqueuer)

  assert retried.status == "pending"
  assert retried.attempts == 0
  assert retried.error_message is None
  assert retried.started_at is None
  assert retried.completed_at is None
  assert retried.metadata["retried_by"] == "admin-1"
  assert retried.metadata["previous_attempts"] == 1
  assert retried.metadata["previous_error"] == "upstream 502"
  assert enqueuer.job_ids == [failed.job_id]


@pytest.mark.anyio
async def test_retry_requires_admin_and_failed_status(settings, jobs_repo, job_factory, enqueuer):
  failed = await _failed_job(jobs_repo, job_factory)
  pending = await jobs_repo.create_job(job_factory())

  with pytest.raises(JobAccessDeniedError):
    await job_service.retry_job(failed.job_id, OWNER, settings, jobs_repo=jobs_repo, enqueuer=enqueuer)
  with pytest.raises(InvalidJobStateError) as exc:
    await job_service.retry_job(pending.job_id, ADMIN, settings, jobs_repo=jobs_repo, enqueuer=enqueuer)
  assert exc.value.current_status == "pending"
  with pytest.raises(JobNotFoundError):
    await job_service.retry_job("missing", ADMIN, settings, jobs_repo=jobs_repo, enqueuer=enqueuer)
  assert enqueuer.job_ids == []


@pytest.mark.anyio
async def test_cancel_only_applies_to_pending_jobs(settings, jobs_repo, job_factory):
  pending = await jobs_repo.create_job(job_factory())
  processing = await jobs_repo.create_job(job_factory())
  await jobs_repo.claim_job(processing.job_id, now=NOW)

  cancelled = await job_service.cancel_job(pending.job_id, OWNER, settings, jobs_repo=jobs_repo)

  assert cancelled.status == "cancelled"
  assert cancelled.completed_at is not None
  assert cancelled.metadata["cancelled_by"] == "student-1"
  with pytest.raises(InvalidJobStateError) as exc:
    await job_service.cancel_job(processing.job_id, ADMIN, settings, jobs_repo=jobs_repo)
  assert exc.value.to_detail()["code"] == "INVALID_STATUS"
  assert exc.value.current_status == "processing"


@pytest.mark.anyio
async def test_cancel_is_limited_to_owner_or_admin(settings, jobs_repo, job_factory):
  pending = await jobs_repo.create_job(job_factory())

  with pytest.raises(JobAccessDeniedError):
    await job_service.cancel_job(pending.job_id, STRANGER, settings, jobs_repo=jobs_repo)
  assert (await job_service.cancel_job(pending.job_id, ADMIN, settings, jobs_repo=jobs_repo)).status == "cancelled"


@pytest.mark.anyio
async def test_purge_removes_only_failed_jobs(settings, jobs_repo, job_factory):
  first = await _failed_job(jobs_repo, job_factory)
  second = await _failed_job(jobs_repo, job_factory)
  pending = await jobs_repo.create_job(job_factory())

  with pytest.raises(JobAccessDeniedError):
    await job_service.purge_failed_jobs(OWNER, settings, jobs_repo=jobs_repo)

  assert await job_service.purge_failed_jobs(ADMIN, settings, [first.job_id, pending.job_id], jobs_repo=jobs_repo) == 1
  assert await jobs_repo.get_job(first.job_id) is None
  assert await jobs_repo.get_job(pending.job_id) is not None
  assert await job_service.purge_failed_jobs(ADMIN, settings, jobs_repo=jobs_repo) == 1
  assert await jobs_repo.get_job(second.job_id) is None


@pytest.mark.anyio
async def test_result_is_only_available_once_completed(settings, jobs_repo, job_factory):
  job = await jobs_repo.create_job(job_factory())

  with pytest.raises(InvalidJobStateError):
    await job_service.get_job_result(job.job_id, OWNER, settings, jobs_repo=jobs_repo)

  await jobs_repo.claim_job(job.job_id, now=NOW)
  await jobs_repo.complete_job(job.job_id, feedback=FeedbackDraft(content="Nice."), now=NOW)
  feedback = await job_service.get_job_result(job.job_id, OWNER, settings, jobs_repo=jobs_repo)
  assert feedback.content == "Nice."
  with pytest.raises(JobAccessDeniedError):
    await job_service.get_job_result(job.job_id, STRANGER, settings, jobs_repo=jobs_repo)


@pytest.mark.anyio
async def test_describe_job_projects_by_role(settings, jobs_repo, job_factory):
  await jobs_repo.create_job(job_factory(priority=10))
  job = await jobs_repo.create_job(job_factory())

  owner_view = await job_service.describe_job(job, OWNER, jobs_repo, settings)
  admin_view = await job_service.describe_job(job, ADMIN, jobs_repo, settings)

  assert owner_view.queue_position == 2
  assert owner_view.estimated_wait_seconds == 60
  assert "attempts" not in owner_view.model_dump()
  assert admin_view.attempts == 0
  assert admin_view.priority == 5


@pytest.mark.anyio
async def test_listing_scopes_owners_and_adds_stats_for_admins(settings, jobs_repo, job_factory):
  await jobs_repo.create_job(job_factory(requester_id="student-1"))
  await jobs_repo.create_job(job_factory(requester_id="student-2"))

  items, total, stats = await job_service.list_jobs_for(OWNER, settings, jobs_repo=jobs_repo)
  assert total == 1
  assert stats is None
  assert len(items) == 1

  items, total, stats = await job_service.list_jobs_for(ADMIN, settings, jobs_repo=jobs_repo)
  assert total == 2
  assert isinstance(stats, dict)


@pytest.mark.anyio
async def test_retry_refuses_when_subject_already_has_an_active_job(settings, jobs_repo, job_factory, enqueuer):
  failed = await _failed_job(jobs_repo, job_factory, subject_id="assignment-x")
  replacement = await jobs_repo.create_job(job_factory("assignment-x"))

  with pytest.raises(DuplicateJobError) as exc:
    await job_service.retry_job(failed.job_id, ADMIN, settings, jobs_repo=jobs_repo, enqueuer=enqueuer)

  assert exc.value.to_detail()["data"]["job_id"] == replacement.job_id
  assert (await jobs_repo.get_job(failed.job_id)).status == "failed"
  assert (await jobs_repo.find_active_for_subject("assignment-x")).job_id == replacement.job_id
  _, active = await jobs_repo.list_jobs(status="pending", subject_id="assignment-x")
  assert active == 1
  assert enqueuer.job_ids == []


@pytest.mark.anyio
async def test_store_rejects_reactivation_next_to_an_active_job(jobs_repo, job_factory):
  failed = await _failed_job(jobs_repo, job_factory, subject_id="assignment-x")
  replacement = await jobs_repo.create_job(job_factory("assignment-x"))

  with pytest.raises(DuplicateJobError) as exc:
    await jobs_repo.update_status(failed.job_id, expected="failed", new="pending", now=NOW, attempts=0)

  assert exc.value.to_detail()["data"]["job_id"] == replacement.job_id
  assert (await jobs_repo.get_job(failed.job_id)).status == "failed"


@pytest.mark.anyio
async def test_admin_regenerates_reviewed_assignment_as_next_version(settings, jobs_repo, assignments_repo, add_assignment, enqueuer):
  add_assignment("assignment-r")
  first = await job_service.submit_job("assignment-r", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)
  await jobs_repo.claim_job(first.job_id, now=NOW)
  await jobs_repo.complete_job(first.job_id, feedback=FeedbackDraft(content="First pass."), now=NOW)
  add_assignment("assignment-r", status="feedback_ready")

  with pytest.raises(SubjectValidationError):
    await job_service.submit_job("assignment-r", OWNER, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)

  again = await job_service.submit_job("assignment-r", ADMIN, settings, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)
  assert again.priority == settings.priority_privileged
  assert again.metadata == {"submitted_by": "admin-1", "manual": True}
  assert again.requester_id == "student-1"

  await jobs_repo.claim_job(again.job_id, now=NOW)
  completed = await jobs_repo.complete_job(again.job_id, feedback=FeedbackDraft(content="Second pass."), now=NOW)
  feedback = await jobs_repo.get_feedback(completed.result_id)
  assert feedback.version == 2
  assert await jobs_repo.latest_feedback_version("assignment-r") == 2
  assert enqueuer.job_ids == [first.job_id, again.job_id]
