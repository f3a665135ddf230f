"""Generation template registry and result contracts.

Each template declares:
- which upstream function to call and which session_data slice it fills
- the whitelisted inputs (own session keys + upstream accelerator slices)
- the structural contract its result must satisfy before anything is committed

Templates are validated against the accelerator catalog at import time.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from accelerator_engine.core.exceptions import (
    CatalogError,
    InvalidResultShapeError,
    UnknownTemplateError,
)
from accelerator_engine.domain.catalog import ACCELERATORS, AcceleratorDefinition
from accelerator_engine.domain.session_data import get_path


class TemplateKind(StrEnum):
    GENERATION = "generation"
    REFINEMENT = "refinement"  # capped manual refinement of an existing slice


@dataclass(frozen=True)
class UpstreamSource:
    """A read-only slice of another accelerator's session fed into the payload."""

    accelerator_number: int
    key: str
    alias: str


@dataclass(frozen=True)
class ResultContract:
    """Structural rules a generation result must pass.

    array_key set: result[array_key] must be a non-empty list of objects, each
    with every required field non-blank and at least one any_of field non-blank.
    array_key None: the result itself must be an object with the required fields.
    criteria_path: dotted path (inside each element, or inside the object) to a
    list whose length must fall within the bounds.
    """

    array_key: str | None = None
    required_fields: tuple[str, ...] = ()
    any_of_fields: tuple[str, ...] = ()
    criteria_path: str | None = None
    criteria_bounds: tuple[int, int] | None = None
    regeneration_criteria_bounds: tuple[int, int] | None = None

    @property
    def is_array(self) -> bool:
        return self.array_key is not None

    def bounds(self, regeneration: bool) -> tuple[int, int] | None:
        if regeneration and self.regeneration_criteria_bounds is not None:
            return self.regeneration_criteria_bounds
        return self.criteria_bounds


@dataclass(frozen=True)
class GenerationTemplate:
    template_id: str
    accelerator_number: int
    step_number: int
    function_name: str
    target_slice: str
    contract: ResultContract
    input_fields: tuple[str, ...] = ()
    text_fields: tuple[str, ...] = ()  # truncated to payload_max_text_chars
    upstream: tuple[UpstreamSource, ...] = ()
    hash_fields: tuple[str, ...] = ()  # payload fields feeding the source hash; empty = all
    kind: TemplateKind = TemplateKind.GENERATION
    max_runs: int | None = None
    confirm_regeneration: bool = True

    @property
    def upstream_numbers(self) -> tuple[int, ...]:
        return tuple(sorted({source.accelerator_number for source in self.upstream}))


_REPORT_CONTRACT = ResultContract(required_fields=("content",))

TEMPLATES: dict[str, GenerationTemplate] = {
    t.template_id: t
    for t in (
        GenerationTemplate(
            template_id="institutional_report",
            accelerator_number=1,
            step_number=6,
            function_name="generate-report",
            target_slice="report",
            contract=_REPORT_CONTRACT,
            input_fields=("institution_profile", "pei_analysis", "supplementary_answers"),
            text_fields=("pei_analysis",),
        ),
        GenerationTemplate(
            template_id="survey_report",
            accelerator_number=2,
            step_number=6,
            function_name="generate-survey-report",
            target_slice="report",
            contract=_REPORT_CONTRACT,
            input_fields=("survey_questions", "survey_responses"),
            upstream=(UpstreamSource(1, "report", "institutional_report"),),
        ),
        GenerationTemplate(
            template_id="priority_report",
            accelerator_number=3,
            step_number=6,
            function_name="generate-priority-report",
            target_slice="report",
            contract=_REPORT_CONTRACT,
            input_fields=("priorities", "analysis_notes"),
            text_fields=("analysis_notes",),
            upstream=(
                UpstreamSource(1, "report", "institutional_report"),
                UpstreamSource(2, "report", "survey_report"),
            ),
        ),
        GenerationTemplate(
            template_id="initial_strategies",
            accelerator_number=4,
            step_number=3,
            function_name="generate-strategies-ac4",
            target_slice="strategies",
            contract=ResultContract(array_key="strategies", required_fields=("title", "description")),
            input_fields=("context",),
            upstream=(UpstreamSource(3, "report", "priority_report"),),
        ),
        GenerationTemplate(
            template_id="strategies_refinement",
            accelerator_number=4,
            step_number=4,
            function_name="chat-strategies-refinement",
            target_slice="strategies",
            contract=ResultContract(array_key="strategies", required_fields=("title", "description")),
            input_fields=("context", "strategies", "refinement_request"),
            text_fields=("refinement_request",),
            hash_fields=("context", "priority_report"),
            upstream=(UpstreamSource(3, "report", "priority_report"),),
            kind=TemplateKind.REFINEMENT,
            max_runs=1,
            confirm_regeneration=False,
        ),
        GenerationTemplate(
            template_id="unit_structure",
            accelerator_number=5,
            step_number=5,
            function_name="generate-estructura-sesiones-ac5",
            target_slice="sessions_structure",
            contract=ResultContract(array_key="sessions", required_fields=("title", "purpose")),
            input_fields=("unit_title", "situation", "purposes", "competencies"),
            text_fields=("situation",),
            upstream=(UpstreamSource(4, "strategies", "strategies"),),
        ),
        GenerationTemplate(
            template_id="unit_coherence",
            accelerator_number=6,
            step_number=3,
            function_name="analyze-unit-coherence",
            target_slice="coherence",
            contract=ResultContract(required_fields=("summary",)),
            input_fields=("unit", "diagnosis_text"),
            text_fields=("diagnosis_text",),
            upstream=(UpstreamSource(5, "sessions_structure", "sessions_structure"),),
        ),
        GenerationTemplate(
            template_id="evaluation_rubric",
            accelerator_number=7,
            step_number=2,
            function_name="generate-evaluation-rubric",
            target_slice="rubric",
            contract=ResultContract(
                required_fields=("levels",),
                criteria_path="criteria",
                criteria_bounds=(4, 8),
            ),
            input_fields=("focus",),
            upstream=(
                UpstreamSource(6, "unit", "unit"),
                UpstreamSource(6, "diagnosis_text", "diagnosis_text"),
            ),
            text_fields=("diagnosis_text",),
        ),
        GenerationTemplate(
            template_id="class_sessions",
            accelerator_number=8,
            step_number=2,
            function_name="generate-session-structure",
            target_slice="sessions",
            contract=ResultContract(
                array_key="sessions",
                any_of_fields=("title", "opening", "development", "closing"),
                criteria_path="rubric.criteria",
                criteria_bounds=(4, 8),
                regeneration_criteria_bounds=(2, 8),
            ),
            input_fields=("sessions_count", "notes"),
            text_fields=("diagnosis_text",),
            upstream=(
                UpstreamSource(6, "unit", "unit"),
                UpstreamSource(6, "diagnosis_text", "diagnosis_text"),
                UpstreamSource(7, "rubric", "rubric"),
            ),
            hash_fields=("unit", "diagnosis_text", "rubric", "sessions_count"),
        ),
    )
}


def get_template(template_id: str, templates: Mapping[str, GenerationTemplate] | None = None) -> GenerationTemplate:
    templates = TEMPLATES if templates is None else templates
    try:
        return templates[template_id]
    except KeyError:
        raise UnknownTemplateError(template_id) from None


def templates_for(accelerator_number: int, templates: Mapping[str, GenerationTemplate] | None = None) -> list[GenerationTemplate]:
    templates = TEMPLATES if templates is None else templates
    return [t for t in templates.values() if t.accelerator_number == accelerator_number]


def validate_templates(
    templates: Mapping[str, GenerationTemplate],
    catalog: dict[int, AcceleratorDefinition],
) -> None:
    """Check every template against the catalog and every step's `generates` list.

    Raises:
        CatalogError: On the first violation found
    """
    for template_id, template in templates.items():
        if template.template_id != template_id:
            raise CatalogError(f"Template registered as '{template_id}' declares '{template.template_id}'")

        accelerator = catalog.get(template.accelerator_number)
        if accelerator is None:
            raise CatalogError(f"Template '{template_id}' targets unknown accelerator {template.accelerator_number}")

        if not 1 <= template.step_number <= accelerator.total_steps:
            raise CatalogError(f"Template '{template_id}' targets unknown step {template.step_number}")

        if template_id not in accelerator.step(template.step_number).generates:
            raise CatalogError(
                f"Step {template.step_number} of accelerator {accelerator.number} does not list '{template_id}'"
            )

        for source in template.upstream:
            if source.accelerator_number not in catalog or source.accelerator_number == accelerator.number:
                raise CatalogError(f"Template '{template_id}' reads invalid upstream {source.accelerator_number}")

        for bounds in (template.contract.criteria_bounds, template.contract.regeneration_criteria_bounds):
            if bounds is not None and not 0 < bounds[0] <= bounds[1]:
                raise CatalogError(f"Template '{template_id}' has invalid criteria bounds {bounds}")

        if template.kind == TemplateKind.REFINEMENT and not template.max_runs:
            raise CatalogError(f"Refinement template '{template_id}' needs max_runs >= 1")

    for accelerator in catalog.values():
        for step in accelerator.steps:
            for template_id in step.generates:
                template = templates.get(template_id)
                if template is None or template.accelerator_number != accelerator.number:
                    raise CatalogError(
                        f"Accelerator {accelerator.number} step {step.number} lists unknown template '{template_id}'"
                    )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == [] or value == {}


def _check_criteria(contract: ResultContract, element: Mapping[str, Any], regeneration: bool, label: str) -> None:
    bounds = contract.bounds(regeneration)
    if contract.criteria_path is None or bounds is None:
        return

    criteria = get_path(element, contract.criteria_path)
    if not isinstance(criteria, list):
        raise InvalidResultShapeError(f"{label}: '{contract.criteria_path}' is missing or not a list")

    low, high = bounds
    if not low <= len(criteria) <= high:
        raise InvalidResultShapeError(
            f"{label}: {len(criteria)} criteria outside the allowed range {low}-{high}"
        )


def _check_fields(contract: ResultContract, element: Any, label: str) -> None:
    if not isinstance(element, Mapping):
        raise InvalidResultShapeError(f"{label}: expected an object, got {type(element).__name__}")

    blank = [f for f in contract.required_fields if _is_blank(element.get(f))]
    if blank:
        raise InvalidResultShapeError(f"{label}: empty required field(s) {', '.join(blank)}")

    if contract.any_of_fields and all(_is_blank(element.get(f)) for f in contract.any_of_fields):
        raise InvalidResultShapeError(
            f"{label}: needs at least one of {', '.join(contract.any_of_fields)}"
        )


def validate_result(template: GenerationTemplate, result: Any, *, regeneration: bool = False) -> Any:
    """Structurally validate a generation result and return the slice value.

    Args:
        template: Template whose contract applies
        result: The `result` member of a successful envelope
        regeneration: Use the regeneration criteria bounds when they differ

    Returns:
        The list of elements (array contracts) or the object itself

    Raises:
        InvalidResultShapeError: On any contract violation
    """
    contract = template.contract

    if not contract.is_array:
        _check_fields(contract, result, "result")
        _check_criteria(contract, result, regeneration, "result")
        return dict(result)

    if not isinstance(result, Mapping):
        raise InvalidResultShapeError(f"result: expected an object with '{contract.array_key}'")

    elements = result.get(contract.array_key)
    if not isinstance(elements, list):
        raise InvalidResultShapeError(f"result: '{contract.array_key}' is missing or not a list")
    if not elements:
        raise InvalidResultShapeError(f"result: '{contract.array_key}' is empty")

    for position, element in enumerate(elements, start=1):
        label = f"{contract.array_key}[{position}]"
        _check_fields(contract, element, label)
        _check_criteria(contract, element, regeneration, label)

    return [dict(element) for element in elements]


validate_templates(TEMPLATES, ACCELERATORS)
