class AcceleratorEngineError(Exception):
    """Base exception for the accelerator workflow engine."""

    pass


class CatalogError(AcceleratorEngineError):
    """Raised when the accelerator or template catalog fails validation at startup."""

    pass


class UnknownAcceleratorError(AcceleratorEngineError):
    """Raised when an accelerator number is not in the catalog."""

    def __init__(self, accelerator_number: int):
        self.accelerator_number = accelerator_number
        super().__init__(f"Unknown accelerator {accelerator_number}")


class UnknownTemplateError(AcceleratorEngineError):
    """Raised when a generation template id is unknown or belongs to another accelerator."""

    def __init__(self, template_id: str, accelerator_number: int | None = None):
        self.template_id = template_id
        self.accelerator_number = accelerator_number
        suffix = f" for accelerator {accelerator_number}" if accelerator_number is not None else ""
        super().__init__(f"Unknown generation template '{template_id}'{suffix}")


class PrerequisiteNotMetError(AcceleratorEngineError):
    """Raised when an accelerator is opened before its prerequisites are satisfied."""

    def __init__(self, accelerator_number: int, missing: list[int], reason: str = ""):
        self.accelerator_number = accelerator_number
        self.missing = missing
        self.reason = reason
        detail = reason or f"missing prerequisites {missing}"
        super().__init__(f"Accelerator {accelerator_number} is locked: {detail}")


class ValidationFailedError(AcceleratorEngineError):
    """Raised when a step validation predicate rejects an explicit close."""

    pass


class InvalidTransitionError(AcceleratorEngineError):
    """Raised when a lifecycle transition (close, reopen, pause) is not allowed."""

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"Cannot {action}: {reason}")


class SessionClosedError(AcceleratorEngineError):
    """Raised when content is mutated while the session is completed."""

    pass


class SessionNotFoundError(AcceleratorEngineError):
    """Raised when a store update targets a session id that does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class TransportError(AcceleratorEngineError):
    """Raised when the store or the generation service is unreachable."""

    def __init__(self, message: str, request_id: str | None = None):
        self.request_id = request_id
        super().__init__(message)


class UpstreamRejectedError(AcceleratorEngineError):
    """Raised when the generation service answers with success=false."""

    def __init__(self, message: str, request_id: str | None = None, code: str | None = None):
        self.request_id = request_id
        self.code = code
        super().__init__(message)


class InvalidResultShapeError(AcceleratorEngineError):
    """Raised when a generation result fails structural validation."""

    def __init__(self, message: str, request_id: str | None = None):
        self.request_id = request_id
        super().__init__(message)


class ConfirmationRequiredError(AcceleratorEngineError):
    """Raised when a regeneration is executed without explicit confirmation."""

    pass


class GenerationThrottledError(AcceleratorEngineError):
    """Raised when a generation is requested inside the cooldown window."""

    def __init__(self, template_id: str, retry_after: float):
        self.template_id = template_id
        self.retry_after = retry_after
        super().__init__(f"Generation '{template_id}' throttled, retry in {retry_after:.0f}s")


class RefinementLimitReachedError(AcceleratorEngineError):
    """Raised when a refinement template has used all of its runs."""

    def __init__(self, template_id: str, max_runs: int):
        self.template_id = template_id
        self.max_runs = max_runs
        super().__init__(f"Refinement '{template_id}' already used {max_runs} of {max_runs} runs")


class ConcurrencyConflictError(AcceleratorEngineError):
    """Raised when two writers or two generations contend for one session."""

    pass


class GenerationInFlightError(ConcurrencyConflictError):
    """Raised when a second generation starts while one is in flight."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"A generation is already in flight for session {session_id}")


class SessionOwnershipError(ConcurrencyConflictError):
    """Raised when another process holds the ownership lease of a session."""

    def __init__(self, session_key: str, holder: str | None):
        self.session_key = session_key
        self.holder = holder
        super().__init__(f"Session {session_key} is owned by {holder or 'another process'}")
