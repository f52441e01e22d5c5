"""Read-only lookup of the assignments that feedback jobs are created for."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select

from feedback_engine.core.database import get_session_factory
from feedback_engine.schema.external import Assignment, Profile

ELIGIBLE_STATUS = "submitted"


@dataclass(frozen=True)
class AssignmentRecord:
  """An assignment joined with its owner's tier."""

  assignment_id: str
  user_id: str
  status: str
  content: str | None = None
  owner_tier: str | None = None

  @property
  def is_eligible(self) -> bool:
    return self.status == ELIGIBLE_STATUS


class AssignmentsRepository(Protocol):
  async def get_assignment(self, assignment_id: str) -> AssignmentRecord | None:
    """Fetch an assignment and its owner's tier."""


class PostgresAssignmentsRepository(AssignmentsRepository):
  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_assignment(self, assignment_id: str) -> AssignmentRecord | None:
    async with self._session_factory() as session:
      stmt = select(Assignment, Profile.role).outerjoin(Profile, Profile.id == Assignment.user_id).where(Assignment.id == assignment_id)
      row = (await session.execute(stmt)).first()
      if row is None:
        return None
      assignment, role = row
      return AssignmentRecord(assignment_id=assignment.id, user_id=assignment.user_id, status=assignment.status, content=assignment.content, owner_tier=role)


class InMemoryAssignmentsRepository(AssignmentsRepository):
  def __init__(self) -> None:
    self._assignments: dict[str, AssignmentRecord] = {}

  def add(self, record: AssignmentRecord) -> None:
    self._assignments[record.assignment_id] = record

  async def get_assignment(self, assignment_id: str) -> AssignmentRecord | None:
    return self._assignments.get(assignment_id)
