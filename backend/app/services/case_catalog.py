"""Case graph provider: storage, publish-time validation and lookup."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.common.clock import utcnow
from app.core.app_exceptions import CaseUnavailable, InvalidCaseGraph
from app.core.logging import get_logger
from app.models.case import CaseStatus, ClinicalCase
from app.schemas.case_graph import CaseGraph, CaseStep
from app.services.step_resolver import walk_to_exhaustion

logger = get_logger(__name__)


def validate_case_graph(graph: CaseGraph) -> None:
    """
    Check the structural invariants a published case must satisfy.

    Collects every problem before raising so authors see them all at once.

    Raises:
        InvalidCaseGraph: If step ids repeat, a prerequisite is dangling or
            self-referential, or some step can never become eligible
            (prerequisite cycle).
    """
    problems: list[dict[str, Any]] = []

    seen: set[str] = set()
    for step in graph.steps:
        if step.step_id in seen:
            problems.append({"step_id": step.step_id, "issue": "duplicate step_id"})
        seen.add(step.step_id)

    for step in graph.steps:
        if step.step_id in step.prerequisite_ids:
            problems.append({"step_id": step.step_id, "issue": "step lists itself as a prerequisite"})
        for prerequisite_id in sorted(step.prerequisite_ids - seen):
            problems.append(
                {
                    "step_id": step.step_id,
                    "issue": f"unknown prerequisite {prerequisite_id!r}",
                }
            )

    if not problems:
        reachable = set(walk_to_exhaustion(graph.steps))
        for step in graph.steps:
            if step.step_id not in reachable:
                problems.append(
                    {
                        "step_id": step.step_id,
                        "issue": "unreachable (prerequisite cycle)",
                    }
                )

    if problems:
        raise InvalidCaseGraph(
            f"Case graph {graph.case_id} failed validation",
            details={"problems": problems},
        )


def _steps_to_json(steps: tuple[CaseStep, ...]) -> list[dict[str, Any]]:
    payload = []
    for step in steps:
        data = step.model_dump(mode="json")
        data["prerequisite_ids"] = sorted(step.prerequisite_ids)
        payload.append(data)
    return payload


def graph_from_record(record: ClinicalCase) -> CaseGraph:
    """Build the immutable graph from a stored case row."""
    return CaseGraph(
        case_id=record.id,
        title=record.title,
        description=record.description or "",
        specialty=record.specialty,
        difficulty=record.difficulty,
        status=record.status,
        chief_complaint=record.chief_complaint or "",
        max_score=record.max_score,
        expected_duration_seconds=record.expected_duration_seconds,
        steps=record.steps_json,
    )


def save_case(db: Session, graph: CaseGraph) -> ClinicalCase:
    """
    Insert or replace a case.

    Cases saved directly as PUBLISHED are validated first; any other status is
    stored as-is and validated when published.
    """
    if graph.status == CaseStatus.PUBLISHED:
        validate_case_graph(graph)

    record = db.get(ClinicalCase, graph.case_id)
    if record is None:
        record = ClinicalCase(id=graph.case_id)
        db.add(record)

    record.title = graph.title
    record.description = graph.description
    record.specialty = graph.specialty
    record.difficulty = graph.difficulty
    record.status = graph.status
    record.chief_complaint = graph.chief_complaint
    record.max_score = graph.max_score
    record.expected_duration_seconds = graph.expected_duration_seconds
    record.steps_json = _steps_to_json(graph.steps)
    if graph.status == CaseStatus.PUBLISHED and record.published_at is None:
        record.published_at = utcnow()

    db.commit()
    db.refresh(record)
    return record


def publish_case(db: Session, case_id: UUID) -> CaseGraph:
    """
    Validate a stored case and mark it published.

    Raises:
        CaseUnavailable: If the case does not exist
        InvalidCaseGraph: If the graph fails validation
    """
    record = db.get(ClinicalCase, case_id)
    if record is None:
        raise CaseUnavailable(f"Case {case_id} not found", details={"case_id": str(case_id)})

    graph = graph_from_record(record)
    validate_case_graph(graph)

    record.status = CaseStatus.PUBLISHED
    record.published_at = utcnow()
    db.commit()

    logger.info(
        "case_published",
        extra={"event": "case_published", "case_id": str(case_id), "total_steps": len(graph.steps)},
    )
    return graph.model_copy(update={"status": CaseStatus.PUBLISHED})


def get_case_graph(db: Session, case_id: UUID) -> CaseGraph | None:
    """Load a case graph regardless of status (for sessions already in progress)."""
    record = db.get(ClinicalCase, case_id)
    if record is None:
        return None
    return graph_from_record(record)


def get_published_case(db: Session, case_id: UUID) -> CaseGraph:
    """
    Load a case that learners may start.

    Raises:
        CaseUnavailable: If the case is missing or not published
    """
    graph = get_case_graph(db, case_id)
    if graph is None or graph.status != CaseStatus.PUBLISHED:
        raise CaseUnavailable(
            "Case not found or not available",
            details={"case_id": str(case_id)},
        )
    return graph
