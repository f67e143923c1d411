"""Tests for case storage, publish-time validation and lookup."""

import uuid

import pytest
from sqlalchemy.orm import Session

from app.core.app_exceptions import CaseUnavailable, InvalidCaseGraph
from app.models.case import CaseStatus, ClinicalCase
from app.services.case_catalog import (
    get_case_graph,
    get_published_case,
    publish_case,
    save_case,
    validate_case_graph,
)
from tests.helpers.seed import make_graph, make_step


def _issues(exc: InvalidCaseGraph) -> list[str]:
    return [problem["issue"] for problem in exc.details["problems"]]


def test_valid_graph_passes() -> None:
    graph = make_graph((make_step("s1"), make_step("s2", prerequisites=("s1",))))

    validate_case_graph(graph)


def test_cycle_is_rejected() -> None:
    graph = make_graph(
        (
            make_step("s1"),
            make_step("a", prerequisites=("b",)),
            make_step("b", prerequisites=("a",)),
        )
    )

    with pytest.raises(InvalidCaseGraph) as exc_info:
        validate_case_graph(graph)

    problems = exc_info.value.details["problems"]
    assert {p["step_id"] for p in problems} == {"a", "b"}
    assert exc_info.value.code == "INVALID_CASE_GRAPH"


def test_dangling_prerequisite_is_rejected() -> None:
    graph = make_graph((make_step("s1", prerequisites=("ghost",)),))

    with pytest.raises(InvalidCaseGraph) as exc_info:
        validate_case_graph(graph)

    assert _issues(exc_info.value) == ["unknown prerequisite 'ghost'"]


def test_self_prerequisite_is_rejected() -> None:
    graph = make_graph((make_step("s1", prerequisites=("s1",)),))

    with pytest.raises(InvalidCaseGraph) as exc_info:
        validate_case_graph(graph)

    assert "step lists itself as a prerequisite" in _issues(exc_info.value)


def test_duplicate_step_ids_are_rejected() -> None:
    graph = make_graph((make_step("s1"), make_step("s1", option_prefix="other")))

    with pytest.raises(InvalidCaseGraph) as exc_info:
        validate_case_graph(graph)

    assert _issues(exc_info.value) == ["duplicate step_id"]


def test_publish_validates_and_round_trips_graph(db: Session) -> None:
    graph = make_graph(
        (
            make_step("history"),
            make_step("exam"),
            make_step("diagnosis", prerequisites=("exam", "history")),
        )
    )
    save_case(db, graph)

    published = publish_case(db, graph.case_id)

    assert published.status == CaseStatus.PUBLISHED
    loaded = get_published_case(db, graph.case_id)
    assert loaded.step_ids == ["history", "exam", "diagnosis"]
    assert loaded.get_step("diagnosis").prerequisite_ids == frozenset({"history", "exam"})
    assert db.get(ClinicalCase, graph.case_id).published_at is not None


def test_publish_of_invalid_graph_leaves_case_unpublished(db: Session) -> None:
    graph = make_graph((make_step("s1", prerequisites=("missing",)),))
    save_case(db, graph)

    with pytest.raises(InvalidCaseGraph):
        publish_case(db, graph.case_id)

    db.rollback()
    assert get_case_graph(db, graph.case_id).status == CaseStatus.DRAFT


def test_draft_case_is_unavailable(db: Session) -> None:
    graph = make_graph((make_step("s1"),))
    save_case(db, graph)

    with pytest.raises(CaseUnavailable) as exc_info:
        get_published_case(db, graph.case_id)

    assert exc_info.value.status_code == 404


def test_missing_case_is_unavailable(db: Session) -> None:
    with pytest.raises(CaseUnavailable):
        get_published_case(db, uuid.uuid4())

    assert get_case_graph(db, uuid.uuid4()) is None
