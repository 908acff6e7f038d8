"""OpenAI SDK wrapper for streaming chat completions."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
)

from ..config import AIConfig

logger = logging.getLogger(__name__)


class _FirstTokenTimeoutError(Exception):
    """Raised when the first chunk does not arrive within first_token_timeout."""


class _StreamTimeoutError(Exception):
    """Raised when the stream stalls mid-response after the first chunk."""


class AIService:
    def __init__(self, config: AIConfig) -> None:
        self.config = config
        self._build_client()

    def _build_client(self) -> None:
        timeout = httpx.Timeout(
            connect=float(self.config.connect_timeout),
            read=float(self.config.request_timeout),
            write=float(self.config.request_timeout),
            pool=float(self.config.request_timeout),
        )
        # SECURITY-REVIEW: verify=False only when user explicitly sets verify_ssl: false in config
        http_client = httpx.AsyncClient(verify=self.config.verify_ssl, timeout=timeout)
        self.client = AsyncOpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key,
            http_client=http_client,
        )

    async def close(self) -> None:
        await self.client.close()

    @staticmethod
    async def _iter_stream(stream_iter: Any, total_timeout: float) -> AsyncGenerator[Any, None]:
        """Iterate an async stream under a hard total deadline."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + total_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise _StreamTimeoutError()
            try:
                chunk = await asyncio.wait_for(stream_iter.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                logger.warning("Stream total deadline exceeded after %.0fs", total_timeout)
                raise _StreamTimeoutError()
            yield chunk

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Stream one model step.

        Yields ``token``, ``tool_call``, ``usage``, ``error`` and ``done``
        events. Transient failures are retried with backoff before an
        ``error``. A step that requests tools ends after its last ``tool_call``
        event without a ``done``.
        """
        full_messages = [{"role": "system", "content": self.config.system_prompt}] + messages

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": full_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools

        max_attempts = max(1, self.config.retry_max_attempts + 1)
        last_transient_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                stream = await asyncio.wait_for(
                    self.client.chat.completions.create(**kwargs),
                    timeout=float(self.config.request_timeout),
                )
                stream_iter = stream.__aiter__()

                try:
                    first_chunk = await asyncio.wait_for(
                        stream_iter.__anext__(), timeout=float(self.config.first_token_timeout)
                    )
                except asyncio.TimeoutError:
                    raise _FirstTokenTimeoutError()
                except StopAsyncIteration:
                    yield {"event": "done", "data": {}}
                    return

                async def _prepended_stream() -> AsyncGenerator[Any, None]:
                    yield first_chunk
                    async for c in AIService._iter_stream(stream_iter, float(self.config.request_timeout)):
                        yield c

                current_tool_calls: dict[int, dict[str, Any]] = {}
                finish_reason: str | None = None
                try:
                    async for chunk in _prepended_stream():
                        usage = getattr(chunk, "usage", None)
                        if usage:
                            yield {
                                "event": "usage",
                                "data": {
                                    "prompt_tokens": usage.prompt_tokens or 0,
                                    "completion_tokens": usage.completion_tokens or 0,
                                    "total_tokens": usage.total_tokens or 0,
                                },
                            }

                        choice = chunk.choices[0] if chunk.choices else None
                        if not choice:
                            continue

                        delta = choice.delta
                        if delta and delta.content:
                            yield {"event": "token", "data": {"content": delta.content}}

                        if delta and delta.tool_calls:
                            for tc in delta.tool_calls:
                                idx = tc.index
                                if idx not in current_tool_calls:
                                    current_tool_calls[idx] = {"id": tc.id or "", "function_name": "", "arguments": ""}
                                if tc.id:
                                    current_tool_calls[idx]["id"] = tc.id
                                if tc.function and tc.function.name:
                                    current_tool_calls[idx]["function_name"] = tc.function.name
                                if tc.function and tc.function.arguments:
                                    current_tool_calls[idx]["arguments"] += tc.function.arguments

                        if choice.finish_reason:
                            finish_reason = choice.finish_reason
                finally:
                    if hasattr(stream, "close"):
                        try:
                            await asyncio.wait_for(stream.close(), timeout=2.0)
                        except (asyncio.TimeoutError, Exception):
                            pass

                if current_tool_calls and finish_reason in (None, "tool_calls"):
                    for _idx, tc_data in sorted(current_tool_calls.items()):
                        try:
                            args = json.loads(tc_data["arguments"]) if tc_data["arguments"] else {}
                        except json.JSONDecodeError:
                            args = {}
                        yield {
                            "event": "tool_call",
                            "data": {"id": tc_data["id"], "function_name": tc_data["function_name"], "arguments": args},
                        }
                    return

                yield {"event": "done", "data": {"finish_reason": finish_reason or "stop"}}
                return

            except BadRequestError as e:
                body = getattr(e, "body", {}) or {}
                err_code = body.get("error", {}).get("code", "") if isinstance(body, dict) else ""
                if err_code == "context_length_exceeded" or "context_length" in str(e).lower():
                    logger.warning("Context length exceeded: %s", e)
                    yield {
                        "event": "error",
                        "data": {
                            "message": "Conversation too long for model context window.",
                            "code": "context_length_exceeded",
                            "retryable": False,
                        },
                    }
                else:
                    logger.exception("AI bad request error")
                    yield {"event": "error", "data": {"message": "AI request error", "code": "bad_request", "retryable": False}}
                return
            except AuthenticationError:
                logger.error("Authentication with the AI provider failed")
                yield {
                    "event": "error",
                    "data": {"message": "Authentication failed. Check your API key.", "code": "auth_failed", "retryable": False},
                }
                return
            except RateLimitError as e:
                logger.warning("Rate limited by AI provider: %s", e)
                yield {
                    "event": "error",
                    "data": {"message": "Rate limited by API provider", "code": "rate_limit", "retryable": True},
                }
                return
            except APIStatusError as e:
                # Must come after the APIStatusError subclasses handled above.
                if e.status_code < 500:
                    logger.warning("API client error %d: %s", e.status_code, type(e).__name__)
                    yield {
                        "event": "error",
                        "data": {"message": f"API error (HTTP {e.status_code})", "code": "api_error", "retryable": False},
                    }
                    return
                last_transient_error = e
                logger.warning("API server error %d (attempt %d/%d)", e.status_code, attempt + 1, max_attempts)
            except _StreamTimeoutError:
                logger.warning("Stream timed out mid-response")
                yield {"event": "error", "data": {"message": "Stream timed out", "code": "timeout", "retryable": True}}
                return
            except (APITimeoutError, APIConnectionError, _FirstTokenTimeoutError, asyncio.TimeoutError) as e:
                last_transient_error = e
                logger.warning("Transient error (attempt %d/%d): %s", attempt + 1, max_attempts, type(e).__name__)

            if attempt < max_attempts - 1:
                delay = self.config.retry_backoff_base * (2**attempt)
                logger.info("Retrying in %.1fs (attempt %d/%d)", delay, attempt + 2, max_attempts)
                await asyncio.sleep(delay)

        if isinstance(last_transient_error, APIConnectionError) and not isinstance(
            last_transient_error, APITimeoutError
        ):
            message, code = f"Cannot connect to API ({max_attempts} attempts)", "connection_error"
        elif isinstance(last_transient_error, APIStatusError):
            message = f"API server error (HTTP {last_transient_error.status_code}, {max_attempts} attempts)"
            code = "api_error"
        else:
            message, code = f"No response from API ({max_attempts} attempts)", "timeout"
        yield {"event": "error", "data": {"message": message, "code": code, "retryable": True}}

    async def validate_connection(self) -> tuple[bool, str, list[str]]:
        try:
            models = await self.client.models.list()
            model_ids = [m.id for m in models.data]
            return True, "Connected successfully", model_ids
        except AuthenticationError:
            logger.error("Authentication failed during connection validation")
            return False, "Authentication failed. Check your API key.", []
        except APITimeoutError:
            logger.warning("Connection validation timed out")
            return False, "Connection timed out. The API may be slow or unreachable.", []
        except APIConnectionError:
            logger.warning("Cannot connect to API at %s", self.config.base_url)
            return (
                False,
                f"Cannot connect to API at {self.config.base_url}. Check the URL and your network connection.",
                [],
            )
        except Exception as e:
            logger.error("AI connection validation failed: %s", e)
            return False, "Connection to AI service failed", []
