"""
LLM Client Library for the shelf recommender

This module provides a single ``complete(system_prompt, user_prompt)`` surface
over two transports: the LLM microservice (HTTP, via httpx) and a direct
OpenAI chat call through LangChain. Every failure is mapped onto the
``LLMServiceError`` hierarchy so callers can decide on a fallback with one
``except`` clause.
"""

import asyncio
import time
import uuid
from typing import Dict, Any, Optional

import httpx
import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from .retry import RetryConfig, retry_async
from .settings import settings as S
from .structured_logging import get_logger

logger = get_logger(__name__)


class LLMRequest(BaseModel):
    """Request model for LLM service calls."""
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_prompt: str
    system_prompt: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 2000
    response_format: Optional[str] = "json_object"


class LLMResponse(BaseModel):
    """Response model for LLM service calls."""
    success: bool
    request_id: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    model: str
    cached: bool = False
    timestamp: str


class LLMServiceError(Exception):
    """Base exception for LLM service errors."""
    pass


class LLMServiceUnavailableError(LLMServiceError):
    """Raised when LLM service is unavailable."""
    pass


class LLMServiceTimeoutError(LLMServiceError):
    """Raised when LLM service times out."""
    pass


class LLMServiceRateLimitError(LLMServiceError):
    """Raised when rate limit or quota is exceeded."""
    pass


class LLMServiceAuthenticationError(LLMServiceError):
    """Raised when credentials are missing or rejected."""
    pass


class LLMClient:
    """Client for the LLM completion service."""

    def __init__(
        self,
        settings=None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.settings = settings or S
        self.base_url = self.settings.llm_service_url
        self.use_service = self.settings.llm_service_enabled
        self.timeout = self.settings.llm_request_timeout
        self.retry_config = retry_config or RetryConfig.from_settings(self.settings)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        """
        Return the raw completion text for one prompt.

        Args:
            system_prompt: System instructions
            user_prompt: The user prompt
            model: Optional model override
            request_id: Optional id for log correlation

        Returns:
            Completion text as returned by the model

        Raises:
            LLMServiceError: On any transport, auth, quota or timeout failure
        """
        request = LLMRequest(
            request_id=request_id or str(uuid.uuid4()),
            user_prompt=user_prompt,
            system_prompt=system_prompt,
            model=model or self.settings.model_name,
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )

        async def _attempt() -> str:
            try:
                return await asyncio.wait_for(self._dispatch(request), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise LLMServiceTimeoutError(f"LLM call exceeded {self.timeout}s")

        return await retry_async(
            _attempt,
            self.retry_config,
            retry_exceptions=(LLMServiceUnavailableError, LLMServiceTimeoutError),
            operation="llm completion",
        )

    async def _dispatch(self, request: LLMRequest) -> str:
        if self.use_service:
            response = await self._call_service(request)
            if not response.success or not response.data:
                raise LLMServiceError(f"LLM service returned failure: {response.error}")
            return str(response.data.get("response", ""))
        return await self._call_openai(request)

    async def _call_service(self, request: LLMRequest) -> LLMResponse:
        """Call the LLM microservice."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/invoke",
                    json=request.model_dump(),
                    headers={"Content-Type": "application/json"}
                )

                if response.status_code == 429:
                    raise LLMServiceRateLimitError("Rate limit exceeded")
                elif response.status_code in (401, 403):
                    raise LLMServiceAuthenticationError(f"Auth rejected: {response.status_code}")
                elif response.status_code >= 500:
                    raise LLMServiceUnavailableError(f"Service error: {response.status_code}")
                elif response.status_code >= 400:
                    error_detail = response.text
                    raise LLMServiceError(f"Client error {response.status_code}: {error_detail}")

                return LLMResponse(**response.json())

            except httpx.TimeoutException:
                raise LLMServiceTimeoutError("Request timed out")
            except httpx.ConnectError:
                raise LLMServiceUnavailableError("Cannot connect to LLM service")
            except httpx.HTTPError as e:
                raise LLMServiceError(f"HTTP error: {e}")
            except ValueError as e:
                raise LLMServiceError(f"Unreadable service response: {e}")

    async def _call_openai(self, request: LLMRequest) -> str:
        """Direct OpenAI chat completion through LangChain."""
        if not self.settings.openai_api_key:
            raise LLMServiceAuthenticationError("OpenAI API key not provided")

        llm = ChatOpenAI(
            model=request.model,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            api_key=self.settings.openai_api_key,
            timeout=self.timeout,
            max_retries=0,
        ).bind(response_format={"type": request.response_format})

        messages = []
        if request.system_prompt:
            messages.append(SystemMessage(content=request.system_prompt))
        messages.append(HumanMessage(content=request.user_prompt))

        start_time = time.time()
        try:
            result = await llm.ainvoke(messages)
        except openai.RateLimitError as e:
            raise LLMServiceRateLimitError(f"OpenAI rate limit/quota: {e}")
        except openai.AuthenticationError as e:
            raise LLMServiceAuthenticationError(f"OpenAI auth failed: {e}")
        except openai.APITimeoutError as e:
            raise LLMServiceTimeoutError(f"OpenAI timed out: {e}")
        except openai.APIConnectionError as e:
            raise LLMServiceUnavailableError(f"Cannot reach OpenAI: {e}")
        except openai.APIError as e:
            raise LLMServiceError(f"OpenAI error: {e}")

        logger.debug(
            "OpenAI completion received",
            extra={
                "request_id": request.request_id,
                "model": request.model,
                "llm_latency_ms": round((time.time() - start_time) * 1000, 1),
            },
        )
        return result.content if isinstance(result.content, str) else str(result.content)

