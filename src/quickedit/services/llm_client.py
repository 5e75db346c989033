"""LLM client with cancellable SSE/NDJSON text streaming."""

import httpx
import json
from typing import AsyncIterator, Dict, Any, Optional
import asyncio

from quickedit.utils.cancellation import CancellationToken
from quickedit.utils.logging import get_logger
from quickedit.models.config import LLMConfig
from quickedit.services.exceptions import GenerationError


logger = get_logger(__name__)


def _extract_content_from_openai_chunk(data: Dict[str, Any]) -> str | None:
    """
    Extract content from OpenAI-style streaming chunk.

    OpenAI/Ollama return chunks like:
    {
        "choices": [{
            "delta": {"content": "..."},
            "finish_reason": null
        }]
    }

    Args:
        data: Parsed JSON chunk from OpenAI API

    Returns:
        Content string if present, None otherwise
    """
    try:
        if "choices" in data and len(data["choices"]) > 0:
            choice = data["choices"][0]
            if "delta" in choice and "content" in choice["delta"]:
                return choice["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    return None


def _extract_content_from_ollama_chunk(data: Dict[str, Any]) -> str | None:
    """
    Extract content from Ollama native streaming chunk.

    Ollama's /api/chat returns chunks like:
    {
        "model": "...",
        "message": {
            "role": "assistant",
            "content": "..."
        },
        "done": false
    }

    Args:
        data: Parsed JSON chunk from Ollama /api/chat

    Returns:
        Content string if present, None otherwise
    """
    try:
        if "message" in data and "content" in data["message"]:
            return data["message"]["content"]
    except (KeyError, TypeError):
        pass
    return None


class LLMClient:
    """
    Streaming generation service over HTTP.

    Supports OpenAI-compatible APIs and native Ollama with automatic retry
    on transient connection errors. Yields raw text fragments in arrival
    order; the edit session does all accumulation.
    """

    def __init__(self, config: LLMConfig):
        """
        Initialize LLM client.

        Args:
            config: LLM configuration (endpoint, API key, model)
        """
        self.config = config
        self.timeout = httpx.Timeout(
            connect=10.0,
            read=60.0,  # Per-read timeout for streaming
            write=10.0,
            pool=10.0
        )
        self._is_ollama: bool | None = None  # Cached provider detection

    def _base_url(self) -> str:
        base_url = str(self.config.endpoint).rstrip("/")
        # Remove /v1 suffix if present (OpenAI-compatible path)
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        return base_url

    async def _detect_ollama(self) -> bool:
        """
        Detect if the LLM endpoint is Ollama by probing /api/version.

        This detection is cached after the first call.

        Returns:
            True if Ollama detected, False otherwise
        """
        if self._is_ollama is not None:
            return self._is_ollama

        version_url = f"{self._base_url()}/api/version"
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(5.0), verify=False) as client:
                logger.debug("llm_provider_detection", version_url=version_url)

                response = await client.get(version_url)

                if response.status_code == 200:
                    logger.info("llm_provider_detected", provider="ollama", version_url=version_url)
                    self._is_ollama = True
                    return True

        except Exception as e:
            logger.debug(
                "llm_provider_detection_failed",
                error=str(e),
                assumed_provider="openai",
            )

        logger.info("llm_provider_detected", provider="openai")
        self._is_ollama = False
        return False

    async def stream(
        self,
        messages: list[dict[str, str]],
        system_prompt: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        max_retries: int = 1,
        retry_delay: float = 2.0,
        request_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a chat completion as text fragments.

        Both SSE (``data: ...`` lines, ``[DONE]`` terminator) and NDJSON
        response formats are handled. The cancellation token is checked
        between lines; leaving the iterator closes the HTTP stream.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            system_prompt: Optional system prompt prepended to the messages
            token: Cancellation token for this generation
            max_retries: Number of automatic retries on connection errors (default: 1)
            retry_delay: Delay in seconds between retries (default: 2.0)
            request_id: Optional identifier for this request (for logging/tracing)

        Yields:
            Non-empty text fragments

        Raises:
            GenerationError: On HTTP errors, exhausted retries or cancellation

        Example:
            >>> async for fragment in client.stream(
            ...     messages=[{"role": "user", "content": "Rewrite: hello"}],
            ...     system_prompt="You are an editor",
            ... ):
            ...     print(fragment, end="")
        """
        if not request_id:
            current_task = asyncio.current_task()
            task_name = current_task.get_name() if current_task else None
            request_id = task_name if task_name and task_name != "None" else "unknown"

        is_ollama = await self._detect_ollama()

        full_messages = list(messages)
        if system_prompt:
            full_messages.insert(0, {"role": "system", "content": system_prompt})

        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": full_messages,
            "stream": True,
            "temperature": self.config.temperature,
        }

        # Add num_ctx for Ollama in options object
        if is_ollama and self.config.num_ctx:
            payload["options"] = {"num_ctx": self.config.num_ctx}

        logger.info(
            "llm_request_started",
            request_id=request_id,
            model=self.config.model,
            endpoint=str(self.config.endpoint),
            provider="ollama" if is_ollama else "openai",
            message_count=len(full_messages),
        )
        logger.debug("llm_request_payload", request_id=request_id, payload=payload)

        if is_ollama:
            url = self._base_url() + "/api/chat"
        else:
            url = str(self.config.endpoint).rstrip("/") + "/chat/completions"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        attempt = 0
        while attempt <= max_retries:
            fragment_count = 0
            try:
                async with httpx.AsyncClient(timeout=self.timeout, verify=False) as client:
                    async with client.stream("POST", url, json=payload, headers=headers) as response:
                        response.raise_for_status()

                        async for line in response.aiter_lines():
                            if token is not None:
                                token.raise_if_cancelled()
                            if not line.strip():
                                continue

                            json_line = line
                            if line.startswith("data: "):
                                json_line = line[6:]
                                if json_line.strip() == "[DONE]":
                                    logger.debug("llm_response_sse_done", request_id=request_id)
                                    continue

                            try:
                                data = json.loads(json_line)
                            except json.JSONDecodeError as e:
                                logger.error(
                                    "llm_malformed_json",
                                    request_id=request_id,
                                    line=line,
                                    error=str(e)
                                )
                                continue

                            if is_ollama:
                                fragment = _extract_content_from_ollama_chunk(data)
                            else:
                                fragment = _extract_content_from_openai_chunk(data)

                            if fragment:
                                fragment_count += 1
                                logger.debug(
                                    "llm_response_chunk",
                                    request_id=request_id,
                                    chunk_num=fragment_count,
                                    length=len(fragment),
                                )
                                yield fragment

                logger.info(
                    "llm_request_completed",
                    request_id=request_id,
                    chunk_count=fragment_count
                )
                return

            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                attempt += 1
                # Retrying after partial output would duplicate text
                if fragment_count or attempt > max_retries:
                    logger.error(
                        "llm_request_failed",
                        request_id=request_id,
                        attempts=attempt,
                        error=str(e)
                    )
                    raise GenerationError(f"Could not reach the model endpoint: {e}") from e

                logger.warning(
                    "llm_request_retry",
                    request_id=request_id,
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                    retry_delay=retry_delay
                )
                await asyncio.sleep(retry_delay)

            except httpx.HTTPStatusError as e:
                # Don't retry on 4xx/5xx errors (bad request, auth, etc.)
                logger.error(
                    "llm_http_error",
                    request_id=request_id,
                    status_code=e.response.status_code,
                    error=str(e)
                )
                raise GenerationError(
                    f"Model endpoint returned HTTP {e.response.status_code}"
                ) from e

            except httpx.HTTPError as e:
                logger.error("llm_transport_error", request_id=request_id, error=str(e))
                raise GenerationError(f"Generation failed: {e}") from e
