"""Next-step resolution over a case's prerequisite graph.

Pure functions. The graph is assumed valid (checked when the case is
published): no cycles, every prerequisite names a step of the same case.
"""

from collections.abc import Collection, Sequence

from app.schemas.case_graph import CaseStep


def resolve_next_step(
    steps: Sequence[CaseStep],
    completed_step_ids: Collection[str],
) -> CaseStep | None:
    """
    Return the first eligible step in declared order, or None when exhausted.

    A step is eligible when it is not completed and all of its prerequisites
    are. Declared order breaks ties between simultaneously eligible steps.

    Args:
        steps: Case steps in declared order
        completed_step_ids: Ids of steps already answered

    Returns:
        Next step to present, or None (resolver exhaustion)
    """
    completed = set(completed_step_ids)
    for step in steps:
        if step.step_id in completed:
            continue
        if step.prerequisite_ids <= completed:
            return step
    return None


def walk_to_exhaustion(steps: Sequence[CaseStep]) -> list[str]:
    """Resolve repeatedly from the empty set and return the visit order."""
    visited: list[str] = []
    completed: set[str] = set()
    while True:
        step = resolve_next_step(steps, completed)
        if step is None:
            return visited
        visited.append(step.step_id)
        completed.add(step.step_id)
