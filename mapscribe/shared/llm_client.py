import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import anthropic
import requests

from .errors import AuthError, NetworkError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


def check_credential(credential: Optional[str]) -> str:
    """Reject credentials that cannot possibly be valid before anything is sent."""
    if not isinstance(credential, str) or not credential.strip():
        raise AuthError("Missing API credential")
    return credential.strip()


class CompletionClient(ABC):
    """One request/response exchange with a text-completion service. No retries, no caching."""

    supports_history = False
    requires_credential = True

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, credential: Optional[str],
                       history: Optional[List[Message]] = None) -> str:
        pass

    @staticmethod
    def create(provider: str, **config) -> 'CompletionClient':
        if provider == "anthropic":
            return AnthropicClient(**config)
        elif provider == "ollama":
            return OllamaClient(**config)
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")


class AnthropicClient(CompletionClient):
    supports_history = True
    requires_credential = True

    def __init__(self, model: str = "claude-sonnet-4-20250514", temperature: float = 0.7,
                 max_tokens: int = 8192, timeout: float = 30.0, **kwargs):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def complete(self, system_prompt: str, user_prompt: str, credential: Optional[str],
                       history: Optional[List[Message]] = None) -> str:
        api_key = check_credential(credential)
        messages = list(history or []) + [{"role": "user", "content": user_prompt}]

        # A client per call keeps the credential out of long-lived state.
        # max_retries=0: retry policy lives in the repair loop.
        try:
            async with anthropic.AsyncAnthropic(api_key=api_key, timeout=self.timeout,
                                                max_retries=0) as client:
                response = await client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    system=system_prompt,
                    messages=messages,
                )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise AuthError(f"Anthropic rejected the credential ({e.status_code})") from e
        except anthropic.APITimeoutError as e:
            raise NetworkError(f"Anthropic request timed out after {self.timeout}s") from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"Anthropic connection error: {e}") from e
        except anthropic.APIStatusError as e:
            raise NetworkError(f"Anthropic API error ({e.status_code}): {e.message}",
                               status_code=e.status_code) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise NetworkError("No text content in Anthropic response")
        logger.debug(f"Anthropic response ({len(text)} chars, stop_reason={response.stop_reason})")
        return text


class OllamaClient(CompletionClient):
    """Local Ollama server. requests is blocking, so each exchange runs on a worker thread."""

    supports_history = False
    requires_credential = False

    def __init__(self, model: str = "qwen3-coder:30b", endpoint: str = "http://localhost:11434",
                 temperature: float = 0.2, max_tokens: int = 8192, timeout: float = 30.0,
                 json_mode: bool = True, **kwargs):
        self.model = os.getenv("OLLAMA_MODEL", model)
        self.endpoint = os.getenv("OLLAMA_ENDPOINT", endpoint)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.json_mode = json_mode

    async def complete(self, system_prompt: str, user_prompt: str, credential: Optional[str],
                       history: Optional[List[Message]] = None) -> str:
        # Cancelling the awaiting task does not stop the thread; its result is dropped.
        return await asyncio.to_thread(self._post, system_prompt, user_prompt, credential, history)

    def _post(self, system_prompt: str, user_prompt: str, credential: Optional[str],
              history: Optional[List[Message]]) -> str:
        url = f"{self.endpoint}/api/generate"
        payload = {
            "model": self.model,
            "prompt": self._fold_history(history, user_prompt),
            "system": system_prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            }
        }
        if self.json_mode:
            payload["format"] = "json"

        headers = {}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"

        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Ollama request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Ollama connection error: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(f"Ollama endpoint rejected the credential ({response.status_code})")
        if not response.ok:
            raise NetworkError(f"Ollama API error ({response.status_code}): {response.text[:200]}",
                               status_code=response.status_code)

        try:
            text = response.json()["response"]
        except (ValueError, KeyError) as e:
            raise NetworkError(f"Malformed Ollama response: {e}") from e
        if not text:
            raise NetworkError("Empty response from Ollama")
        return text

    @staticmethod
    def _fold_history(history: Optional[List[Message]], user_prompt: str) -> str:
        if not history:
            return user_prompt
        turns = [f"{m['role'].upper()}:\n{m['content']}" for m in history]
        turns.append(f"USER:\n{user_prompt}")
        return "\n\n".join(turns)
