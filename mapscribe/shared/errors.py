"""
Exception taxonomy for map generation.

Only AuthError is expected to reach callers of generate(); the repair loop
absorbs the others and turns them into a retry or a fallback result.
"""


class GenerationError(Exception):
    """Base class for all generation failures."""


class AuthError(GenerationError):
    """The credential is missing, malformed or rejected by the service."""


class NetworkError(GenerationError):
    """Transport-level failure talking to the completion service."""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class ParseError(GenerationError):
    """The model output did not contain a usable payload."""


class ExhaustedError(GenerationError):
    """Every attempt failed. Logged alongside the fallback result, never raised by generate()."""
    def __init__(self, attempts: int, last_problem: str = None):
        self.attempts = attempts
        self.last_problem = last_problem
        message = f"generation failed after {attempts} attempts"
        if last_problem:
            message += f": {last_problem}"
        super().__init__(message)
