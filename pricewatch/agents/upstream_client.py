"""
Streaming Gemini client with bounded exponential-backoff retry.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from langchain_core.messages import HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_google_vertexai import ChatVertexAI

from pricewatch.config import settings
from pricewatch.core.errors import UpstreamExhausted

logger = logging.getLogger(__name__)


# Initialize LLM instances - prefer Google AI Studio over Vertex AI
def build_llm():
    """Get the appropriate LLM instance based on available credentials."""
    if settings.GOOGLE_AI_API_KEY:
        logger.info(f"🤖 Using Google AI Studio ({settings.GEMINI_MODEL})")
        llm = ChatGoogleGenerativeAI(
            model=settings.GEMINI_MODEL,
            google_api_key=settings.GOOGLE_AI_API_KEY,
            temperature=0,
            thinking_budget=settings.GEMINI_THINKING_BUDGET,
        )
    elif settings.GOOGLE_APPLICATION_CREDENTIALS:
        logger.info(f"🤖 Using Vertex AI ({settings.GEMINI_MODEL})")
        llm = ChatVertexAI(
            model_name=settings.GEMINI_MODEL,
            temperature=0,
        )
    else:
        raise ValueError("No Google AI credentials available. Set GOOGLE_AI_API_KEY or GOOGLE_APPLICATION_CREDENTIALS.")

    if settings.GEMINI_ENABLE_SEARCH_TOOL:
        # Grounds answers in Google Search results
        llm = llm.bind_tools([{"google_search": {}}])
    return llm


def _chunk_text(chunk: Any) -> str:
    """Text carried by one streamed chunk; empty for chunks with no text parts."""
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


class UpstreamClient:
    """
    Issues one generative request per ``call`` and retries failed attempts.

    An attempt fails when the stream raises or exceeds ``timeout`` seconds;
    attempt ``n`` is followed by a ``base_delay * 2**(n-1)`` second pause.
    Chunks without text are skipped and never fail an attempt.
    """

    def __init__(
        self,
        llm: Any = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._llm = llm
        self.max_retries = max_retries if max_retries is not None else settings.GEMINI_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.GEMINI_RETRY_BASE_DELAY
        self.timeout = timeout if timeout is not None else settings.GEMINI_REQUEST_TIMEOUT
        self._sleep = sleep

    @property
    def llm(self):
        if self._llm is None:
            self._llm = build_llm()
        return self._llm

    async def _stream(self, llm, prompt: str) -> str:
        full_text = []
        async for chunk in llm.astream([HumanMessage(content=prompt)]):
            text = _chunk_text(chunk)
            if text:
                full_text.append(text)
        return "".join(full_text)

    async def call(self, prompt: str) -> str:
        """
        Send ``prompt`` and return the concatenated streamed text.

        Raises:
            UpstreamExhausted: If every attempt failed (or no LLM could be built)
        """
        try:
            llm = self.llm
        except ValueError as e:
            raise UpstreamExhausted(0, e) from e

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.wait_for(self._stream(llm, prompt), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"⌛ Gemini streaming request attempt {attempt} timed out after {self.timeout}s")
            except Exception as e:
                # Transport and provider errors are opaque here; all of them are retried
                last_error = e
                logger.warning(f"⚠️ Gemini streaming request attempt {attempt} failed: {e}")

            if attempt < self.max_retries:
                delay = self.base_delay * 2 ** (attempt - 1)
                await self._sleep(delay)

        raise UpstreamExhausted(self.max_retries, last_error)
