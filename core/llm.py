"""
OpenAI LLM integration for the knowledge-graph pipeline.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Dict, List, Optional

import httpx
import openai

from core.base import BaseKVStorage
from core.utils import compute_args_hash

logger = logging.getLogger(__name__)

# Malformed-input errors: retrying cannot succeed.
NON_RETRYABLE_ERRORS = (
    ValueError,
    TypeError,
    openai.BadRequestError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
)


def async_retry_with_exponential_backoff(max_retries=3, base_delay=4.0, max_delay=10.0):
    """
    Async decorator for retrying LLM / embedding calls with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except NON_RETRYABLE_ERRORS:
                    raise
                except Exception as e:
                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func.__name__}: {e}"
                        )
                        raise

                    if getattr(e, "status_code", None) == 429:
                        logger.warning(
                            f"Rate limit hit in {func.__name__}, attempt {attempt + 1}/{max_retries}"
                        )
                    else:
                        logger.warning(
                            f"Transient error in {func.__name__} ({type(e).__name__}: {e}), "
                            f"attempt {attempt + 1}/{max_retries}"
                        )

                    # Calculate delay with exponential backoff and jitter
                    delay = min(base_delay * (2**attempt), max_delay)
                    total_delay = min(delay + random.uniform(0.0, 0.25) * delay, max_delay)

                    logger.info(f"Retrying in {total_delay:.2f} seconds...")
                    await asyncio.sleep(total_delay)

            return None  # Should never reach here

        return wrapper

    return decorator


def validate_history(history: List[Dict[str, str]]) -> None:
    """Reject malformed conversation history before it reaches the API."""
    if not isinstance(history, list):
        raise ValueError(f"History must be a list, got {type(history)}")
    for i, msg in enumerate(history):
        if not isinstance(msg, dict):
            raise ValueError(f"History message {i} must be dict, got {type(msg)}")
        if "role" not in msg or "content" not in msg:
            raise ValueError(f"History message {i} missing 'role' or 'content'")
        if msg["role"] not in ("user", "assistant", "system"):
            raise ValueError(f"Invalid role in history message {i}: {msg['role']}")


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
    history: Optional[List[Dict[str, str]]] = None,
) -> List[Dict[str, str]]:
    """Message order: system prompt, prior history, then the new user prompt."""
    messages: List[Dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    if history:
        validate_history(history)
        messages.extend(history)
    messages.append({"role": "user", "content": prompt})
    return messages


class BaseLLMClient:
    """Completion interface consumed by extraction, summarization and querying."""

    model: str = ""

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
        **options: Any,
    ) -> str:
        raise NotImplementedError()


class OpenAILLMClient(BaseLLMClient):
    """Chat-completions client on openai.AsyncOpenAI with optional response memoization."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        proxy: Optional[str] = None,
        hashing_kv: Optional[BaseKVStorage] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self.model = model
        self.hashing_kv = hashing_kv
        if client is not None:
            self._client = client
        else:
            http_client = httpx.AsyncClient(proxy=proxy) if proxy else None
            self._client = openai.AsyncOpenAI(
                api_key=api_key, base_url=base_url, http_client=http_client
            )

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
        **options: Any,
    ) -> str:
        hashing_kv: Optional[BaseKVStorage] = options.pop("hashing_kv", self.hashing_kv)
        model = options.pop("model", None) or self.model
        messages = build_messages(prompt, system_prompt=system_prompt, history=history)

        args_hash = None
        if hashing_kv is not None:
            args_hash = compute_args_hash(model, messages, options)
            cached = await hashing_kv.get_by_id(args_hash)
            if cached is not None:
                logger.debug(f"LLM cache hit for {args_hash}")
                return cached["return"]

        content = await self._create(model, messages, options)

        if hashing_kv is not None:
            await hashing_kv.upsert({args_hash: {"return": content, "model": model}})
        return content

    @async_retry_with_exponential_backoff()
    async def _create(self, model: str, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        response = await self._client.chat.completions.create(
            model=model, messages=messages, **options
        )
        content = response.choices[0].message.content
        return content or ""
