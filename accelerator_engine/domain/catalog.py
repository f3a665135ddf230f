"""Accelerator catalog: step tables and prerequisite graph.

The catalog is static configuration. validate_catalog() runs at import time so
a malformed table fails at startup instead of mid-session.
"""
from dataclasses import dataclass, field

from accelerator_engine.core.exceptions import CatalogError, UnknownAcceleratorError
from accelerator_engine.domain.steps import StepDefinition


@dataclass(frozen=True)
class AcceleratorDefinition:
    """One accelerator: its linear steps and what must be done before it."""

    number: int
    key: str
    title: str
    group: str
    steps: tuple[StepDefinition, ...]
    requires: tuple[int, ...] | None = None  # None = default chain (N requires N-1)
    requires_group: tuple[str, int] | None = None  # (group name, threshold percent)
    row_slices: tuple[str, ...] = field(default=())  # session_data arrays whose rows close with the session

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def prerequisites(self) -> tuple[int, ...]:
        if self.requires is not None:
            return self.requires
        return (self.number - 1,) if self.number > 1 else ()

    def step(self, number: int) -> StepDefinition:
        if number < 1 or number > self.total_steps:
            raise IndexError(f"Accelerator {self.number} has no step {number}")
        return self.steps[number - 1]


def _steps(*entries: tuple) -> tuple[StepDefinition, ...]:
    return tuple(StepDefinition(i, *entry) for i, entry in enumerate(entries, start=1))


ACCELERATORS: dict[int, AcceleratorDefinition] = {
    # ── Diagnosis ────────────────────────────────────────────────────────────
    1: AcceleratorDefinition(
        number=1,
        key="institutional_analysis",
        title="Institutional analysis",
        group="diagnosis",
        steps=_steps(
            ("welcome", "Welcome"),
            ("upload_pei", "Upload institutional plan", (), ("pei_document",)),
            ("institution_profile", "Institution profile", (), ("institution_profile",)),
            ("ai_analysis", "AI analysis"),
            ("supplementary_questions", "Supplementary questions"),
            ("report", "Generate report", ("institutional_report",)),
        ),
    ),
    2: AcceleratorDefinition(
        number=2,
        key="community_survey",
        title="Community survey",
        group="diagnosis",
        steps=_steps(
            ("welcome", "Welcome"),
            ("instrument_design", "Instrument design", (), ("survey_questions",)),
            ("question_review", "Question review"),
            ("response_collection", "Response collection", (), ("survey_responses",)),
            ("results", "Results"),
            ("report", "Generate report", ("survey_report",)),
        ),
    ),
    3: AcceleratorDefinition(
        number=3,
        key="prioritisation",
        title="Problem prioritisation",
        group="diagnosis",
        steps=_steps(
            ("welcome", "Welcome"),
            ("inputs", "Diagnosis inputs"),
            ("priorities", "Priorities", (), ("priorities",)),
            ("analysis", "Priority analysis"),
            ("review", "Review"),
            ("report", "Generate report", ("priority_report",)),
        ),
    ),
    # ── Design ───────────────────────────────────────────────────────────────
    4: AcceleratorDefinition(
        number=4,
        key="strategies",
        title="Pedagogical strategies",
        group="design",
        requires_group=("diagnosis", 100),
        row_slices=("strategies",),
        steps=_steps(
            ("priority_report", "Load prioritisation report"),
            ("context", "Context definition", (), ("context",)),
            ("initial_strategies", "Initial strategies", ("initial_strategies",), ("strategies",)),
            ("refinement", "Review and refine strategies", ("strategies_refinement",)),
            ("deepening_questions", "Deepening questions"),
            ("strategies_report", "Strategies report"),
        ),
    ),
    5: AcceleratorDefinition(
        number=5,
        key="unit_design",
        title="Learning unit design",
        group="design",
        row_slices=("sessions_structure",),
        steps=_steps(
            ("welcome", "Welcome"),
            ("unit_info", "Unit information", (), ("unit_title",)),
            ("situation_purpose", "Situation and purposes", (), ("situation",)),
            ("competencies", "Competencies", (), ("competencies",)),
            ("sessions_structure", "Sessions structure", ("unit_structure",), ("sessions_structure",)),
            ("feedback", "Feedback"),
            ("materials", "Materials"),
            ("final_document", "Final document"),
        ),
    ),
    # ── Implementation ───────────────────────────────────────────────────────
    6: AcceleratorDefinition(
        number=6,
        key="unit_setup",
        title="Unit setup",
        group="implementation",
        requires_group=("design", 100),
        steps=_steps(
            ("diagnosis", "Diagnosis summary", (), ("diagnosis_text",)),
            ("unit", "Unit form", (), ("unit",)),
            ("coherence", "Coherence analysis", ("unit_coherence",)),
        ),
    ),
    7: AcceleratorDefinition(
        number=7,
        key="evaluation_rubric",
        title="Evaluation rubric",
        group="implementation",
        steps=_steps(
            ("review_unit", "Review unit"),
            ("rubric", "Generate rubric", ("evaluation_rubric",), ("rubric",)),
            ("close", "Review and close"),
        ),
    ),
    8: AcceleratorDefinition(
        number=8,
        key="class_sessions",
        title="Class sessions",
        group="implementation",
        row_slices=("sessions",),
        steps=_steps(
            ("review_inputs", "Review inputs"),
            ("sessions", "Generate sessions", ("class_sessions",), ("sessions",)),
            ("close", "Review and close"),
        ),
    ),
}


def get_accelerator(
    number: int, catalog: dict[int, AcceleratorDefinition] | None = None
) -> AcceleratorDefinition:
    catalog = ACCELERATORS if catalog is None else catalog
    try:
        return catalog[number]
    except KeyError:
        raise UnknownAcceleratorError(number) from None


def group_members(group: str, catalog: dict[int, AcceleratorDefinition] | None = None) -> tuple[int, ...]:
    """Accelerator numbers in a group, in catalog order."""
    catalog = ACCELERATORS if catalog is None else catalog
    return tuple(sorted(n for n, acc in catalog.items() if acc.group == group))


def dependency_numbers(
    accelerator: AcceleratorDefinition, catalog: dict[int, AcceleratorDefinition] | None = None
) -> tuple[int, ...]:
    """Every accelerator whose session must be loaded to decide access."""
    numbers = set(accelerator.prerequisites)
    if accelerator.requires_group:
        numbers.update(group_members(accelerator.requires_group[0], catalog))
    numbers.discard(accelerator.number)
    return tuple(sorted(numbers))


def validate_catalog(catalog: dict[int, AcceleratorDefinition]) -> None:
    """Check step numbering, keys, prerequisite references and cycles.

    Raises:
        CatalogError: On the first violation found
    """
    groups = {acc.group for acc in catalog.values()}

    for number, accelerator in catalog.items():
        if accelerator.number != number:
            raise CatalogError(f"Accelerator registered as {number} declares number {accelerator.number}")

        if not accelerator.steps:
            raise CatalogError(f"Accelerator {number} has no steps")

        numbers = [s.number for s in accelerator.steps]
        if numbers != list(range(1, len(numbers) + 1)):
            raise CatalogError(f"Accelerator {number} steps are not numbered 1..K contiguously: {numbers}")

        keys = [s.key for s in accelerator.steps]
        if len(set(keys)) != len(keys):
            raise CatalogError(f"Accelerator {number} has duplicate step keys")

        for required in accelerator.prerequisites:
            if required not in catalog:
                raise CatalogError(f"Accelerator {number} requires unknown accelerator {required}")

        if accelerator.requires_group:
            group, threshold = accelerator.requires_group
            if group not in groups:
                raise CatalogError(f"Accelerator {number} requires unknown group '{group}'")
            if not 0 < threshold <= 100:
                raise CatalogError(f"Accelerator {number} group threshold {threshold} outside 1..100")

    # Cycle check over the prerequisite edges (depth-first, three colours)
    visiting: set[int] = set()
    done: set[int] = set()

    def visit(number: int, path: list[int]) -> None:
        if number in done:
            return
        if number in visiting:
            raise CatalogError(f"Prerequisite cycle: {' -> '.join(map(str, path + [number]))}")
        visiting.add(number)
        for required in catalog[number].prerequisites:
            visit(required, path + [number])
        if catalog[number].requires_group:
            for member in group_members(catalog[number].requires_group[0], catalog):
                if member != number:
                    visit(member, path + [number])
        visiting.discard(number)
        done.add(number)

    for number in catalog:
        visit(number, [])


validate_catalog(ACCELERATORS)
