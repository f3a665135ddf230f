"""GenerationClient Protocol and its HTTP implementation.

The generation service is a black box reached by function name. Every call
answers with an envelope {success, result, error}. Transport problems
(connection refused, timeout) raise TransportError after bounded retries;
application errors come back as success=False and are never retried here.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from accelerator_engine.core.config import get_settings
from accelerator_engine.core.exceptions import TransportError

logger = structlog.get_logger(__name__)


@dataclass
class GenerationRequest:
    """One execution of a generation task. request_id is fresh per execution."""

    request_id: str
    template_id: str
    payload: dict[str, Any]
    force: bool = False
    source_hash: str | None = None
    previous_row_ids: list[str] = field(default_factory=list)

    def to_body(self) -> dict[str, Any]:
        body = {
            "request_id": self.request_id,
            "template_id": self.template_id,
            "payload": self.payload,
            "force": self.force,
            "source_hash": self.source_hash,
        }
        if self.previous_row_ids:
            body["previous_row_ids"] = self.previous_row_ids
        return body


@dataclass
class GenerationEnvelope:
    success: bool
    result: Any = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def from_json(cls, body: Any) -> "GenerationEnvelope":
        if not isinstance(body, dict):
            return cls(False, error="Malformed response envelope", code="MALFORMED_ENVELOPE")
        error = body.get("error")
        code = body.get("code")
        if isinstance(error, dict):
            code = code or error.get("code")
            error = error.get("message")
        return cls(
            success=bool(body.get("success")),
            result=body.get("result"),
            error=error,
            code=code,
        )


@runtime_checkable
class GenerationClient(Protocol):
    """Protocol for the AI generation service."""

    async def invoke(self, function_name: str, request: GenerationRequest) -> GenerationEnvelope:
        """Call one generation function.

        Args:
            function_name: Upstream function (e.g. "generate-session-structure")
            request: Request carrying request_id, payload, force and source_hash

        Returns:
            The response envelope; success=False for application errors

        Raises:
            TransportError: When the service cannot be reached
        """
        ...


class HttpGenerationClient:
    """GenerationClient over HTTP: POST {base_url}/{function_name}."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait=None,
    ):
        """Initialize the client.

        Args:
            base_url: Service root; defaults to settings.generation_base_url
            api_key: Bearer token; defaults to settings.generation_api_key
            timeout: Per-attempt timeout in seconds
            max_attempts: Attempts on transport errors (1 = no retry)
            transport: httpx transport override (tests pass httpx.MockTransport)
            retry_wait: tenacity wait strategy override
        """
        settings = get_settings()
        self.base_url = (base_url or settings.generation_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.generation_api_key
        self.timeout = timeout or settings.generation_timeout_seconds
        self.max_attempts = max_attempts or settings.generation_max_attempts
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    def _headers(self, request: GenerationRequest) -> dict[str, str]:
        headers = {"X-Request-ID": request.request_id, "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, url: str, request: GenerationRequest) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(url, json=request.to_body(), headers=self._headers(request))

    async def invoke(self, function_name: str, request: GenerationRequest) -> GenerationEnvelope:
        url = f"{self.base_url}/{function_name}"

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._retry_wait,
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "generation_transport_retrying",
                request_id=request.request_id,
                function_name=function_name,
                attempt=rs.attempt_number,
                sleep_seconds=rs.next_action.sleep,
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._post(url, request)
        except httpx.TransportError as e:
            raise TransportError(
                f"Generation service unreachable: {type(e).__name__}: {e}",
                request_id=request.request_id,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success:
            return GenerationEnvelope.from_json(body)

        envelope = GenerationEnvelope.from_json(body) if isinstance(body, dict) else GenerationEnvelope(False)
        envelope.success = False
        envelope.error = envelope.error or f"HTTP {response.status_code}"
        envelope.code = envelope.code or f"HTTP_{response.status_code}"
        return envelope
