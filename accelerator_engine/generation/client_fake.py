"""GenerationClientFake: Scenario-based test double for the GenerationClient protocol.

Provides deterministic responses for named scenarios:
- happy_path: Valid result for every registered function
- network_failure: Raises TransportError (service unreachable)
- upstream_rejection: success=false envelope with an error code
- empty_result: Array results come back empty
- invalid_criteria: Rubric criteria count outside every allowed range
- missing_text: Elements with every content field blank
- slow: happy_path after a delay (for single-flight and autosave suspension tests)

Every call is recorded in `calls` for assertions.
"""

import asyncio
from typing import Any

from accelerator_engine.core.exceptions import TransportError
from accelerator_engine.generation.client import GenerationEnvelope, GenerationRequest


def _criteria(count: int) -> list[dict]:
    return [
        {
            "name": f"Criterion {i}",
            "descriptors": {
                "beginning": "Identifies the task with support",
                "in_progress": "Completes the task partially",
                "achieved": "Completes the task autonomously",
                "outstanding": "Transfers the skill to new situations",
            },
        }
        for i in range(1, count + 1)
    ]


def _class_sessions(criteria: int = 4) -> dict:
    return {
        "sessions": [
            {
                "title": f"Session {i}: Exploring our community water sources",
                "opening": "Students share where the water at home comes from.",
                "development": "Groups map water sources and classify them by risk.",
                "closing": "Each group presents one proposal to care for a source.",
                "evidence": "Annotated community map",
                "rubric": {
                    "levels": ["beginning", "in_progress", "achieved", "outstanding"],
                    "criteria": _criteria(criteria),
                },
            }
            for i in range(1, 4)
        ]
    }


_HAPPY_RESULTS = {
    "generate-report": lambda: {"content": "# Institutional report\n\nThe institution prioritises reading.", "format": "markdown"},
    "generate-survey-report": lambda: {"content": "# Survey report\n\n82% of families answered.", "format": "markdown"},
    "generate-priority-report": lambda: {"content": "# Priority report\n\n1. Reading comprehension", "format": "markdown"},
    "generate-strategies-ac4": lambda: {
        "strategies": [
            {"title": "Reading circles", "description": "Weekly peer reading with guiding questions."},
            {"title": "Project-based learning", "description": "Community water project across subjects."},
        ]
    },
    "chat-strategies-refinement": lambda: {
        "strategies": [
            {"title": "Reading circles (refined)", "description": "Peer reading with rotating roles."},
            {"title": "Project-based learning", "description": "Community water project across subjects."},
        ]
    },
    "generate-estructura-sesiones-ac5": lambda: {
        "sessions": [
            {"title": "Where does our water come from?", "purpose": "Identify local water sources."},
            {"title": "Caring for water", "purpose": "Propose actions to protect sources."},
        ]
    },
    "analyze-unit-coherence": lambda: {
        "summary": "The unit purposes align with the diagnosis.",
        "observations": ["Session 2 evidence could be more explicit."],
    },
    "generate-evaluation-rubric": lambda: {
        "levels": ["beginning", "in_progress", "achieved", "outstanding"],
        "criteria": _criteria(5),
    },
    "generate-session-structure": _class_sessions,
}


class GenerationClientFake:
    """Scenario-based test double for GenerationClient."""

    VALID_SCENARIOS = {
        "happy_path",
        "network_failure",
        "upstream_rejection",
        "empty_result",
        "invalid_criteria",
        "missing_text",
        "slow",
    }

    def __init__(self, scenario: str = "happy_path", delay: float = 0.2, results: dict[str, Any] | None = None):
        """Initialize with a named scenario.

        Args:
            scenario: One of VALID_SCENARIOS
            delay: Seconds the `slow` scenario waits before answering
            results: Per-function result overrides for happy_path/slow

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(
                f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}"
            )
        self.scenario = scenario
        self.delay = delay
        self.results = results or {}
        self.calls: list[tuple[str, GenerationRequest]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _happy_result(self, function_name: str) -> Any:
        if function_name in self.results:
            return self.results[function_name]
        factory = _HAPPY_RESULTS.get(function_name)
        if factory is None:
            raise ValueError(f"No fake result for function '{function_name}'")
        return factory()

    async def invoke(self, function_name: str, request: GenerationRequest) -> GenerationEnvelope:
        self.calls.append((function_name, request))

        if self.scenario == "network_failure":
            raise TransportError(
                "Generation service unreachable: ConnectError: connection refused",
                request_id=request.request_id,
            )

        if self.scenario == "upstream_rejection":
            return GenerationEnvelope(
                success=False,
                error="Model quota exceeded for this workspace",
                code="UPSTREAM_QUOTA",
            )

        if self.scenario == "slow":
            await asyncio.sleep(self.delay)

        result = self._happy_result(function_name)

        if self.scenario == "empty_result":
            if isinstance(result, dict):
                result = {key: [] if isinstance(value, list) else value for key, value in result.items()}

        if self.scenario == "invalid_criteria":
            if function_name == "generate-session-structure":
                result = _class_sessions(criteria=9)
            elif function_name == "generate-evaluation-rubric":
                result = {**result, "criteria": _criteria(9)}

        if self.scenario == "missing_text":
            if function_name == "generate-session-structure":
                result = {
                    "sessions": [
                        {**row, "title": "", "opening": "", "development": "", "closing": ""}
                        for row in result["sessions"]
                    ]
                }
            elif isinstance(result, dict):
                result = {key: "" if isinstance(value, str) else value for key, value in result.items()}

        return GenerationEnvelope(success=True, result=result)
