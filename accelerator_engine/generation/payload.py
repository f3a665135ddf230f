"""Payload sanitisation for generation requests.

Only whitelisted fields leave the engine: the template's own input keys from
the current session plus the declared upstream slices. Free-text fields are
truncated so a pasted document cannot blow up the request.
"""

import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from accelerator_engine.generation.contracts import GenerationTemplate


@dataclass
class SanitizedPayload:
    payload: dict[str, Any]
    payload_bytes: int
    truncated_fields: list[str] = field(default_factory=list)


def build_payload(
    template: GenerationTemplate,
    session_data: Mapping[str, Any],
    upstream: Mapping[int, Mapping[str, Any]],
    *,
    max_text_chars: int,
    extra_inputs: Mapping[str, Any] | None = None,
) -> SanitizedPayload:
    """Assemble the sanitized payload for one template.

    Args:
        template: Template declaring the whitelist and upstream sources
        session_data: Current in-memory session data of the requesting accelerator
        upstream: {accelerator_number: session_data} of the upstream accelerators
        max_text_chars: Truncation limit for template.text_fields
        extra_inputs: Per-call inputs (e.g. a refinement request); only whitelisted keys survive

    Returns:
        SanitizedPayload with the payload, its UTF-8 JSON size and truncated field names
    """
    payload: dict[str, Any] = {}

    for key in template.input_fields:
        if key in session_data:
            payload[key] = copy.deepcopy(session_data[key])

    for key, value in (extra_inputs or {}).items():
        if key in template.input_fields:
            payload[key] = copy.deepcopy(value)

    for source in template.upstream:
        data = upstream.get(source.accelerator_number) or {}
        if source.key in data:
            payload[source.alias] = copy.deepcopy(data[source.key])

    truncated = []
    for key in template.text_fields:
        value = payload.get(key)
        if isinstance(value, str) and len(value) > max_text_chars:
            payload[key] = value[:max_text_chars]
            truncated.append(key)

    size = len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))
    return SanitizedPayload(payload=payload, payload_bytes=size, truncated_fields=truncated)


def hash_inputs(template: GenerationTemplate, payload: Mapping[str, Any]) -> dict[str, Any]:
    """The payload fields that feed the source hash."""
    keys = template.hash_fields or tuple(sorted(payload))
    return {key: payload.get(key) for key in keys}
