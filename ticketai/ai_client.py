"""
Adapter for the remote text-classification service (OpenAI-compatible chat completions).

This is the only module that knows the service's wire format. It exposes
`complete(system_prompt, prompt) -> dict` and translates every SDK failure
into a typed ServiceError (see ticketai.errors).
"""

import json
import logging
from typing import Any, Optional, Protocol

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from ticketai import config
from ticketai.errors import (
    MalformedResponseError,
    PermanentServiceError,
    ServiceError,
    ServiceErrorKind,
    service_error_for,
)

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    """Remote capability: prompt in, structured JSON (or plain text) out."""

    model: str
    provider: str

    def complete(
        self,
        system_prompt: str,
        prompt: str,
        *,
        json_mode: bool = True,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        ...


def _caused_by(exc: BaseException, types: tuple) -> bool:
    """Walk the __cause__/__context__ chain looking for one of `types`."""
    seen: Optional[BaseException] = exc
    for _ in range(10):
        if seen is None:
            return False
        if isinstance(seen, types):
            return True
        seen = seen.__cause__ or seen.__context__
    return False


def translate_error(exc: Exception) -> ServiceError:
    """Map an openai SDK exception onto the closed error taxonomy."""
    if isinstance(exc, ServiceError):
        return exc
    if isinstance(exc, APITimeoutError):
        kind = ServiceErrorKind.TIMEOUT
    elif isinstance(exc, APIConnectionError):
        if _caused_by(exc, (ConnectionRefusedError,)):
            kind = ServiceErrorKind.CONNECTION_REFUSED
        elif _caused_by(exc, (TimeoutError,)):
            kind = ServiceErrorKind.TIMEOUT
        else:
            kind = ServiceErrorKind.CONNECTION_RESET
    elif isinstance(exc, RateLimitError):
        kind = ServiceErrorKind.RATE_LIMITED
    elif isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        kind = ServiceErrorKind.AUTHENTICATION
    elif isinstance(exc, (NotFoundError, BadRequestError)):
        kind = ServiceErrorKind.CONFIGURATION
    elif isinstance(exc, APIStatusError):
        kind = (
            ServiceErrorKind.CONNECTION_RESET
            if exc.status_code >= 500
            else ServiceErrorKind.CONFIGURATION
        )
    elif isinstance(exc, (json.JSONDecodeError, TypeError, KeyError, IndexError, AttributeError)):
        kind = ServiceErrorKind.MALFORMED_RESPONSE
    elif isinstance(exc, OpenAIError):
        kind = ServiceErrorKind.CONFIGURATION
    else:
        kind = ServiceErrorKind.UNKNOWN
    return service_error_for(kind, f"{type(exc).__name__}: {exc}")


class OpenAICompletionService:
    """
    Chat-completions client for OpenAI or any OpenAI-compatible provider (Kimi/Moonshot).

    Transport retries are left to the SDK (`max_retries`); whatever still
    fails is raised as a typed ServiceError.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        provider: str = "openai",
        temperature: float = 0.3,
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.provider = provider
        self.temperature = temperature
        self._client = client
        if self._client is None and api_key:
            self._client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout_seconds,
                max_retries=max_retries,
            )

    def complete(
        self,
        system_prompt: str,
        prompt: str,
        *,
        json_mode: bool = True,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        if self._client is None:
            raise PermanentServiceError(
                ServiceErrorKind.CONFIGURATION, f"No API key configured for provider {self.provider}"
            )
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = self._client.chat.completions.create(**kwargs)
            content = response.choices[0].message.content
        except Exception as e:
            err = translate_error(e)
            logger.warning(
                "Completion call failed (provider=%s, model=%s, kind=%s): %s",
                self.provider, self.model, err.kind.value, e,
            )
            raise err from e

        if content is None:
            raise MalformedResponseError("Empty completion content")
        if not json_mode:
            return content
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Completion is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise MalformedResponseError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed


def build_completion_service() -> OpenAICompletionService:
    """Construct the service from environment configuration (called once at process start)."""
    if config.ai_provider() == "kimi":
        api_key, base_url = config.KIMI_API_KEY, config.KIMI_BASE_URL
    else:
        api_key, base_url = config.OPENAI_API_KEY, config.OPENAI_BASE_URL
    return OpenAICompletionService(
        model=config.ai_model(),
        api_key=api_key,
        base_url=base_url,
        provider=config.ai_provider(),
        temperature=config.AI_TEMPERATURE,
        timeout_seconds=config.AI_TIMEOUT_SECONDS,
        max_retries=config.AI_MAX_RETRIES,
    )
