"""Pydantic schemas for clinical case graphs.

A case graph is validated once, when it is published. The session engine
assumes every graph it loads satisfies these models.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.case import CaseDifficulty, CaseStatus


class StepOption(BaseModel):
    """Answer option of a step. ``is_correct``/``points``/``explanation`` are never shown before answering."""

    model_config = ConfigDict(frozen=True)

    option_id: str = Field(..., min_length=1, max_length=64)
    text: str = Field(default="", max_length=2000)
    explanation: str = Field(default="", max_length=4000)
    is_correct: bool
    points: int = Field(default=0, ge=0)


class CaseStep(BaseModel):
    """One decision point of a case."""

    model_config = ConfigDict(frozen=True)

    step_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(default="", max_length=200)
    description: str = Field(default="", max_length=4000)
    question: str = Field(default="", max_length=2000)
    prerequisite_ids: frozenset[str] = Field(default_factory=frozenset)
    options: tuple[StepOption, ...] = Field(..., min_length=1)

    @field_validator("options")
    @classmethod
    def option_ids_unique(cls, options: tuple[StepOption, ...]) -> tuple[StepOption, ...]:
        seen: set[str] = set()
        for option in options:
            if option.option_id in seen:
                raise ValueError(f"duplicate option_id {option.option_id!r}")
            seen.add(option.option_id)
        return options

    def get_option(self, option_id: str) -> StepOption | None:
        for option in self.options:
            if option.option_id == option_id:
                return option
        return None


class CaseGraph(BaseModel):
    """Immutable case definition consumed by the session engine."""

    model_config = ConfigDict(frozen=True)

    case_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    specialty: str = Field(..., min_length=1, max_length=100)
    difficulty: CaseDifficulty
    status: CaseStatus = CaseStatus.DRAFT
    chief_complaint: str = Field(default="")
    max_score: int = Field(..., gt=0)
    expected_duration_seconds: int = Field(..., gt=0)
    steps: tuple[CaseStep, ...] = Field(..., min_length=1)

    @property
    def step_ids(self) -> list[str]:
        return [step.step_id for step in self.steps]

    def get_step(self, step_id: str) -> CaseStep | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None


# ============================================================================
# Learner-facing views (correctness redacted)
# ============================================================================


class OptionView(BaseModel):
    option_id: str
    text: str


class StepView(BaseModel):
    """A step as shown to the learner before it is answered."""

    step_id: str
    title: str
    description: str
    question: str
    options: list[OptionView]

    @classmethod
    def from_step(cls, step: CaseStep) -> "StepView":
        return cls(
            step_id=step.step_id,
            title=step.title,
            description=step.description,
            question=step.question,
            options=[OptionView(option_id=o.option_id, text=o.text) for o in step.options],
        )


class CaseBrief(BaseModel):
    """Case metadata needed to render the first simulation screen."""

    case_id: UUID
    title: str
    description: str
    specialty: str
    difficulty: CaseDifficulty
    chief_complaint: str
    expected_duration_seconds: int
    max_score: int
    total_steps: int

    @classmethod
    def from_graph(cls, graph: CaseGraph) -> "CaseBrief":
        return cls(
            case_id=graph.case_id,
            title=graph.title,
            description=graph.description,
            specialty=graph.specialty,
            difficulty=graph.difficulty,
            chief_complaint=graph.chief_complaint,
            expected_duration_seconds=graph.expected_duration_seconds,
            max_score=graph.max_score,
            total_steps=len(graph.steps),
        )
