"""Artifact Pydantic schemas for the known session_data slices.

session_data is an open mapping. The keys registered in KNOWN_SLICES are
validated and normalised when a generation result is committed; every other
key is carried through untouched.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from accelerator_engine.domain.rows import RowStatus


class RubricCriterion(BaseModel):
    """One rubric criterion with a descriptor per achievement level."""

    model_config = ConfigDict(extra="allow")

    name: str
    descriptors: dict[str, str] = Field(default_factory=dict)


class RubricArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    levels: list[str] = Field(default_factory=list)
    criteria: list[RubricCriterion] = Field(..., min_length=1)


class SessionRow(BaseModel):
    """A generated class session inside the `sessions` array."""

    model_config = ConfigDict(extra="allow")

    index: int = Field(..., ge=1)
    title: str = ""
    opening: str = ""
    development: str = ""
    closing: str = ""
    purpose: str = ""
    evidence: str = ""
    rubric: RubricArtifact | None = None
    status: RowStatus = RowStatus.DRAFT
    source_hash: str | None = None


class StrategyItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = Field(..., ge=1)
    title: str
    description: str
    status: RowStatus = RowStatus.DRAFT


class UnitSessionOutline(BaseModel):
    """One entry of the unit's sessions structure (title + purpose)."""

    model_config = ConfigDict(extra="allow")

    index: int = Field(..., ge=1)
    title: str
    purpose: str
    status: RowStatus = RowStatus.DRAFT


class ReportArtifact(BaseModel):
    """Generated markdown/html report, opaque to the engine."""

    model_config = ConfigDict(extra="allow")

    content: str
    format: str = "markdown"


class CoherenceArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str
    observations: list[str] = Field(default_factory=list)


class GenerationMeta(BaseModel):
    """Provenance of one generated slice."""

    template_id: str
    request_id: str
    source_hash: str | None = None
    source_snapshot: dict[str, Any] = Field(default_factory=dict)
    generated_at: str
    payload_bytes: int = 0


KNOWN_SLICES: dict[str, TypeAdapter] = {
    "sessions": TypeAdapter(list[SessionRow]),
    "strategies": TypeAdapter(list[StrategyItem]),
    "sessions_structure": TypeAdapter(list[UnitSessionOutline]),
    "rubric": TypeAdapter(RubricArtifact),
    "report": TypeAdapter(ReportArtifact),
    "coherence": TypeAdapter(CoherenceArtifact),
    "generation_meta": TypeAdapter(dict[str, GenerationMeta]),
    "refinements": TypeAdapter(dict[str, int]),
}


def normalize_slice(key: str, value: Any) -> Any:
    """Validate a known slice and return its JSON-ready form.

    Unknown keys are returned unchanged.

    Raises:
        pydantic.ValidationError: If a known slice does not match its schema
    """
    adapter = KNOWN_SLICES.get(key)
    if adapter is None:
        return value
    return adapter.dump_python(adapter.validate_python(value), mode="json")
