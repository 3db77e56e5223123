"""
AI map generation with a bounded repair loop.

The loop is an explicit state machine:

    IDLE -> REQUESTING -> PARSING -> VALIDATING -> SUCCESS
                ^                        |
                |                        v
            REPAIRING <-------- (violations, parse or network error)
                                         |
                                         v
                                       FAILED  (attempts exhausted)

Every exchange with the model consumes one attempt. A rejected credential ends the
call immediately; every other failure is retried with a corrective prompt until the
attempt budget runs out, after which a deterministic fallback map is returned.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from ..shared.errors import AuthError, ExhaustedError, NetworkError, ParseError
from ..shared.llm_client import CompletionClient, check_credential
from ..shared.models import (
    AttemptState,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    GenerationState,
    GeneratorSettings,
    ParsedPayload,
)
from ..shared.schema import SchemaRegistry
from ..verifier.grid_validator import GridValidator
from .prompt_builder import PromptBuilder
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Any]

DEFAULT_MAX_ATTEMPTS = 3
FALLBACK_INTERPRETATION = "generation failed after {attempts} attempts"


class RepairOrchestrator:
    """Drives prompt -> completion -> parse -> validate until a grid passes or attempts run out."""

    def __init__(self, client: CompletionClient, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 registry: SchemaRegistry = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.max_attempts = max_attempts
        self.registry = registry or SchemaRegistry()
        self.prompt_builder = PromptBuilder(self.registry)
        self.parser = ResponseParser()
        self.validator = GridValidator(self.registry)
        self.logger = logging.getLogger(__name__)
        # Strong references to scheduled async progress callbacks until they finish.
        self._callback_tasks: Set[asyncio.Future] = set()

    async def run(self, request: GenerationRequest, credential: Optional[str],
                  on_progress: Optional[ProgressCallback] = None) -> GenerationResult:
        """
        Generate a grid for one request.

        Returns the validated result, or the fallback result once every attempt has failed.
        Raises AuthError when the service rejects the credential.
        """
        # Everything below is local to this call; concurrent runs share nothing mutable.
        prompt = None
        user_prompt = ""
        history: List[Dict[str, str]] = []
        attempts: List[AttemptState] = []
        current: Optional[AttemptState] = None
        payload: Optional[ParsedPayload] = None
        attempt = 0
        state = GenerationState.IDLE

        while True:
            if state is GenerationState.IDLE:
                self._report(on_progress, "preparing prompt...")
                prompt = self.prompt_builder.build_initial(request)
                user_prompt = prompt.user
                state = GenerationState.REQUESTING

            elif state is GenerationState.REQUESTING:
                attempt += 1
                self._report(on_progress, f"contacting model (attempt {attempt} of {self.max_attempts})...")
                current = AttemptState(attempt=attempt, user_prompt=user_prompt)
                attempts.append(current)
                try:
                    current.raw_response = await self.client.complete(
                        prompt.system, user_prompt, credential, history or None
                    )
                except AuthError as e:
                    # Credentials are not self-correcting; no repair attempt is spent.
                    current.error = str(e)
                    self.logger.error(f"Map generation aborted: {e}")
                    self._report(on_progress, "generation failed: credential rejected")
                    raise
                except NetworkError as e:
                    current.error = str(e)
                    self.logger.warning(f"Attempt {attempt} network error: {e}")
                    state = self._after_failure(attempt)
                    continue
                self.logger.debug(f"Attempt {attempt} raw response: {current.raw_response[:500]}")
                state = GenerationState.PARSING

            elif state is GenerationState.PARSING:
                self._report(on_progress, "parsing response...")
                try:
                    payload = self.parser.extract(current.raw_response)
                except ParseError as e:
                    current.error = str(e)
                    current.parse_failure = True
                    current.violations = [f"response could not be parsed: {e}"]
                    self.logger.warning(f"Attempt {attempt} parse error: {e}")
                    state = self._after_failure(attempt)
                    continue
                state = GenerationState.VALIDATING

            elif state is GenerationState.VALIDATING:
                self._report(on_progress, "validating response...")
                violations = self.validator.validate(payload, request.width, request.height,
                                                     request.archetype)
                if violations:
                    current.violations = violations
                    self.logger.warning(
                        f"Attempt {attempt} produced {len(violations)} violation(s): {violations[0]}"
                    )
                    state = self._after_failure(attempt)
                else:
                    state = GenerationState.SUCCESS

            elif state is GenerationState.REPAIRING:
                self._report(on_progress, "retrying with corrections...")
                if current.raw_response is not None:
                    if self.client.supports_history:
                        history = history + [
                            {"role": "user", "content": user_prompt},
                            {"role": "assistant", "content": current.raw_response},
                        ]
                    user_prompt = self.prompt_builder.build_repair(
                        request,
                        current.raw_response,
                        current.violations,
                        include_prior=not self.client.supports_history,
                        parse_failure=current.parse_failure,
                    )
                # After a network error there is nothing to repair: the same prompt is re-sent.
                state = GenerationState.REQUESTING

            elif state is GenerationState.SUCCESS:
                self._report(on_progress, f"map generated on attempt {attempt}")
                self.logger.info(f"Map generated on attempt {attempt} of {self.max_attempts}")
                return self._success_result(payload, request, attempt)

            elif state is GenerationState.FAILED:
                exhausted = ExhaustedError(attempt, self._last_problem(attempts))
                self._report(on_progress, f"generation failed after {attempt} attempts, using fallback grid")
                self.logger.warning(f"{exhausted}; returning fallback grid")
                return self._fallback_result(request, attempt)

    def _after_failure(self, attempt: int) -> GenerationState:
        if attempt < self.max_attempts:
            return GenerationState.REPAIRING
        return GenerationState.FAILED

    def _success_result(self, payload: ParsedPayload, request: GenerationRequest,
                        attempt: int) -> GenerationResult:
        metadata = payload.metadata
        if metadata.archetype is None and request.archetype:
            metadata = metadata.model_copy(update={"archetype": request.archetype})
        return GenerationResult(grid=payload.grid, metadata=metadata, attempts=attempt)

    def _fallback_result(self, request: GenerationRequest, attempt: int) -> GenerationResult:
        return GenerationResult(
            grid=self.registry.fallback_grid(request.width, request.height),
            metadata=GenerationMetadata(
                interpretation=FALLBACK_INTERPRETATION.format(attempts=attempt),
                archetype=request.archetype,
                features=(),
            ),
            attempts=attempt,
            fallback=True,
        )

    @staticmethod
    def _last_problem(attempts: List[AttemptState]) -> Optional[str]:
        if not attempts:
            return None
        last = attempts[-1]
        if last.violations:
            return last.violations[0]
        return last.error

    def _report(self, on_progress: Optional[ProgressCallback], status: str) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(status)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)
        except Exception as e:
            self.logger.warning(f"Progress callback failed: {e}")

    def _callback_done(self, task: "asyncio.Future") -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.warning(f"Progress callback failed: {error}")


async def generate(description: str, *, credential: Optional[str], width: int = None, height: int = None,
                   archetype_hint: Optional[str] = None, on_progress: Optional[ProgressCallback] = None,
                   client: CompletionClient = None, max_attempts: int = None,
                   settings: GeneratorSettings = None) -> GenerationResult:
    """
    Turn a free-text description into a tile grid.

    Args:
        description: What the place looks like
        credential: API key for the completion service, passed per call and never stored
        width: Grid width in tiles (defaults to settings.default_width)
        height: Grid height in tiles (defaults to settings.default_height)
        archetype_hint: Optional archetype name; unknown names are ignored
        on_progress: Called with a short status string on every state change
        client: Completion client; built from settings when omitted
        max_attempts: Total exchanges allowed, including the first
        settings: Defaults for the client and the map size

    Returns:
        The validated GenerationResult, or the fallback result when every attempt failed

    Raises:
        AuthError: The credential is empty or rejected by the service
        ValueError: The description or dimensions are invalid
    """
    settings = settings or GeneratorSettings()
    if client is None:
        client = create_client(settings)

    if client.requires_credential:
        credential = check_credential(credential)

    registry = SchemaRegistry()
    archetype = registry.archetype(archetype_hint)
    if archetype_hint and archetype is None:
        logger.warning(f"Ignoring unknown archetype hint '{archetype_hint}'")

    try:
        request = GenerationRequest(
            description=description,
            width=width if width is not None else settings.default_width,
            height=height if height is not None else settings.default_height,
            archetype=archetype.name if archetype else None,
        )
    except ValidationError as e:
        raise ValueError(f"Invalid generation request: {e}") from e

    orchestrator = RepairOrchestrator(
        client,
        max_attempts=max_attempts if max_attempts is not None else settings.max_attempts,
        registry=registry,
    )
    logger.info(f"Generating {request.width}x{request.height} map: {request.description}")
    return await orchestrator.run(request, credential, on_progress)


def create_client(settings: GeneratorSettings) -> CompletionClient:
    """Build the configured completion client."""
    if settings.provider == "ollama":
        return CompletionClient.create(
            "ollama",
            model=settings.ollama_model,
            endpoint=settings.ollama_endpoint,
            temperature=settings.ollama_temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
        )
    return CompletionClient.create(
        settings.provider,
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.timeout,
    )
