import asyncio
from dataclasses import replace
from datetime import UTC, datetime

import pytest

from feedback_engine.generation.interface import GenerationError, GenerationRequest
from feedback_engine.jobs.models import FeedbackDraft
from feedback_engine.jobs.retry import MAX_ERROR_MESSAGE_LENGTH, decide_retry, describe_error
from feedback_engine.jobs.scheduler import run_scheduler_tick
from feedback_engine.jobs.worker import JobProcessor
from feedback_engine.services.tasks.inprocess import InProcessEnqueuer

NOW = datetime(2026, 1, 2, tzinfo=UTC)


class StaticGenerator:
  def __init__(self, content: str = "Solid structure, cite your sources.") -> None:
    self.content = content
    self.requests: list[GenerationRequest] = []

  async def generate(self, request: GenerationRequest) -> FeedbackDraft:
    self.requests.append(request)
    return FeedbackDraft(content=self.content, ai_model=request.model, input_tokens=10, output_tokens=20)


class FailingGenerator:
  def __init__(self, error: Exception | None = None) -> None:
    self.error = error or GenerationError("upstream 502")
    self.calls = 0

  async def generate(self, request: GenerationRequest) -> FeedbackDraft:
    self.calls += 1
    raise self.error


def _processor(settings, jobs_repo, assignments_repo, generator, enqueuer) -> JobProcessor:
  return JobProcessor(jobs_repo=jobs_repo, assignments_repo=assignments_repo, generator=generator, enqueuer=enqueuer, settings=settings, clock=lambda: NOW)


def test_describe_error_caps_length_and_names_timeouts():
  assert describe_error(asyncio.TimeoutError()) == "Generation timed out"
  assert describe_error(ValueError()) == "ValueError"
  assert len(describe_error(RuntimeError("x" * 5000))) == MAX_ERROR_MESSAGE_LENGTH


def test_retry_decision_depends_only_on_remaining_attempts(job_factory):
  assert decide_retry(job_factory(attempts=1), RuntimeError("a")).requeue
  assert decide_retry(job_factory(attempts=2), asyncio.TimeoutError()).requeue
  final = decide_retry(job_factory(attempts=3), RuntimeError("boom"))
  assert not final.requeue
  assert final.error_message == "boom"


@pytest.mark.anyio
async def test_successful_run_completes_job_and_chains_next(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a", tier="premium")
  job = await jobs_repo.create_job(job_factory("assignment-a"))
  waiting = await jobs_repo.create_job(job_factory("assignment-b"))
  generator = StaticGenerator()

  outcome = await _processor(settings, jobs_repo, assignments_repo, generator, enqueuer).run(job.job_id)

  assert outcome.status == "completed"
  stored = await jobs_repo.get_job(job.job_id)
  assert stored.status == "completed"
  assert stored.attempts == 1
  assert stored.result_id == outcome.result_id
  feedback = await jobs_repo.get_feedback(stored.result_id)
  assert feedback.content == generator.content
  assert feedback.version == 1
  assert generator.requests[0].premium is True
  assert generator.requests[0].model == settings.model_premium
  assert enqueuer.job_ids == [waiting.job_id]


@pytest.mark.anyio
async def test_run_without_id_picks_highest_priority(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  add_assignment("assignment-b")
  await jobs_repo.create_job(job_factory("assignment-a", priority=5))
  premium = await jobs_repo.create_job(job_factory("assignment-b", priority=10))

  outcome = await _processor(settings, jobs_repo, assignments_repo, StaticGenerator(), enqueuer).run()

  assert outcome.job_id == premium.job_id
  assert outcome.status == "completed"


@pytest.mark.anyio
async def test_failure_with_attempts_left_requeues_without_chaining(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))
  await jobs_repo.create_job(job_factory("assignment-b"))

  outcome = await _processor(settings, jobs_repo, assignments_repo, FailingGenerator(), enqueuer).run(job.job_id)

  assert outcome.status == "requeued"
  stored = await jobs_repo.get_job(job.job_id)
  assert stored.status == "pending"
  assert stored.attempts == 1
  assert stored.started_at is None
  assert stored.error_message == "upstream 502"
  assert enqueuer.job_ids == []


@pytest.mark.anyio
async def test_pending_to_failed_after_max_attempts(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))
  waiting = await jobs_repo.create_job(job_factory("assignment-b"))
  generator = FailingGenerator()
  processor = _processor(settings, jobs_repo, assignments_repo, generator, enqueuer)

  statuses = [(await processor.run(job.job_id)).status for _ in range(3)]

  assert statuses == ["requeued", "requeued", "failed"]
  stored = await jobs_repo.get_job(job.job_id)
  assert stored.status == "failed"
  assert stored.attempts == stored.max_attempts == 3
  assert stored.completed_at == NOW
  assert stored.result_id is None
  assert generator.calls == 3
  assert enqueuer.job_ids == [waiting.job_id]

  # A failed job can no longer be claimed.
  assert (await processor.run(job.job_id)).status == "already_processing"
  assert generator.calls == 3


@pytest.mark.anyio
async def test_timeout_is_recorded_as_a_failure(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))

  outcome = await _processor(settings, jobs_repo, assignments_repo, FailingGenerator(asyncio.TimeoutError()), enqueuer).run(job.job_id)

  assert outcome.status == "requeued"
  assert (await jobs_repo.get_job(job.job_id)).error_message == "Generation timed out"


@pytest.mark.anyio
async def test_missing_assignment_counts_as_failed_attempt(settings, jobs_repo, assignments_repo, job_factory, enqueuer):
  job = await jobs_repo.create_job(job_factory("assignment-gone"))
  generator = StaticGenerator()

  outcome = await _processor(settings, jobs_repo, assignments_repo, generator, enqueuer).run(job.job_id)

  assert outcome.status == "requeued"
  assert "no longer exists" in (await jobs_repo.get_job(job.job_id)).error_message
  assert generator.requests == []


@pytest.mark.anyio
async def test_full_gate_leaves_job_queued(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  narrow = replace(settings, max_concurrent_jobs=1)
  busy = await jobs_repo.create_job(job_factory())
  await jobs_repo.claim_job(busy.job_id, now=NOW)
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))

  outcome = await _processor(narrow, jobs_repo, assignments_repo, StaticGenerator(), enqueuer).run(job.job_id)

  assert outcome.status == "queued"
  assert outcome.queue_position == 1
  assert outcome.estimated_wait_seconds == narrow.seconds_per_job_estimate
  assert outcome.to_payload() == {"status": "queued", "jobId": job.job_id, "queuePosition": 1, "estimatedWait": 30}
  assert (await jobs_repo.get_job(job.job_id)).status == "pending"


@pytest.mark.anyio
async def test_unknown_job_and_empty_queue(settings, jobs_repo, assignments_repo, enqueuer):
  processor = _processor(settings, jobs_repo, assignments_repo, StaticGenerator(), enqueuer)

  assert (await processor.run("missing")).status == "not_found"
  assert (await processor.run()).status == "idle"


@pytest.mark.anyio
async def test_result_is_discarded_when_job_was_recovered_mid_generation(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))

  class RecoveredDuringGeneration(StaticGenerator):
    async def generate(self, request: GenerationRequest) -> FeedbackDraft:
      await jobs_repo.update_status(request.job_id, expected="processing", new="pending", now=NOW, started_at=None)
      return await super().generate(request)

  outcome = await _processor(settings, jobs_repo, assignments_repo, RecoveredDuringGeneration(), enqueuer).run(job.job_id)

  assert outcome.status == "lost"
  stored = await jobs_repo.get_job(job.job_id)
  assert stored.status == "pending"
  assert stored.result_id is None
  assert await jobs_repo.latest_feedback_version("assignment-a") == 0


@pytest.mark.anyio
async def test_chain_dispatch_can_be_disabled(settings, jobs_repo, assignments_repo, add_assignment, job_factory, enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))
  await jobs_repo.create_job(job_factory("assignment-b"))

  outcome = await _processor(replace(settings, chain_dispatch=False), jobs_repo, assignments_repo, StaticGenerator(), enqueuer).run(job.job_id)

  assert outcome.status == "completed"
  assert enqueuer.job_ids == []


@pytest.mark.anyio
async def test_chain_dispatch_failure_does_not_affect_outcome(settings, jobs_repo, assignments_repo, add_assignment, job_factory, failing_enqueuer):
  add_assignment("assignment-a")
  job = await jobs_repo.create_job(job_factory("assignment-a"))
  waiting = await jobs_repo.create_job(job_factory("assignment-b"))

  outcome = await _processor(settings, jobs_repo, assignments_repo, StaticGenerator(), failing_enqueuer).run(job.job_id)

  assert outcome.status == "completed"
  assert (await jobs_repo.get_job(waiting.job_id)).status == "pending"


@pytest.mark.anyio
async def test_cap_holds_while_chain_dispatch_drains_the_queue(settings, jobs_repo, assignments_repo, add_assignment, job_factory):
  narrow = replace(settings, max_concurrent_jobs=2)
  observed: list[int] = []

  class ObservingGenerator:
    async def generate(self, request: GenerationRequest) -> FeedbackDraft:
      observed.append(await jobs_repo.count_processing())
      await asyncio.sleep(0.01)
      return FeedbackDraft(content="ok")

  async def runner(job_id: str | None) -> None:
    await processor.run(job_id)

  pool = InProcessEnqueuer(narrow, runner=runner)
  processor = _processor(narrow, jobs_repo, assignments_repo, ObservingGenerator(), pool)
  for index in range(5):
    add_assignment(f"subject-{index}")
    await jobs_repo.create_job(job_factory(f"subject-{index}"))

  report = await run_scheduler_tick(jobs_repo, pool, narrow, NOW)
  await pool.drain()

  assert report.triggered == 2
  assert len(observed) == 5
  assert max(observed) <= 2
  _, completed = await jobs_repo.list_jobs(status="completed")
  assert completed == 5
