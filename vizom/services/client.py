"""
DeepSeekClient - Chart generation and data analysis over the DeepSeek chat API.

Combines:
- CachingService for semantic response caching
- ResilienceService for circuit breaking, retries and HTTP error classification
- ResponseParsingService for turning model output into validated structures
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx
from loguru import logger

from vizom.parsing.charts import ResponseParsingService
from vizom.parsing.types import ParseResult
from vizom.services.caching import CachingService
from vizom.services.errors import APIError, ErrorCode, classify_exception
from vizom.services.resilience import ResilienceService

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 2000

CACHED_CHART_CONFIDENCE = 0.9
CACHED_ANALYSIS_CONFIDENCE = 0.8

FABRICATING_STRATEGIES = frozenset({"Minimal Fallback"})

CHART_SYSTEM_PROMPT = (
    "You are a Chart.js configuration generator. Return only valid JSON with two "
    'keys: "config" (a Chart.js configuration with type, data.labels, data.datasets '
    'and options) and "metadata" (chartType, dataPoints, recommendations and '
    "generatedAt as an ISO-8601 timestamp)."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are a data analysis expert. Provide comprehensive insights and "
    'recommendations. Return only valid JSON with the keys "summary" (an object), '
    '"insights", "recommendations" and "visualizations" (arrays of strings).'
)


@dataclass(frozen=True)
class DeepSeekConfig:
    """Configuration for the DeepSeek API."""

    api_key: str = ""
    base_url: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-chat"
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout: float = 30.0  # Seconds
    enable_caching: bool = True
    cache_ttl: timedelta = timedelta(minutes=5)

    def to_dict(self) -> dict[str, Any]:
        """Public view of the config, without the API key."""
        return {
            "base_url": self.base_url,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "timeout": self.timeout,
            "enable_caching": self.enable_caching,
            "cache_ttl": self.cache_ttl.total_seconds(),
            "api_key_configured": bool(self.api_key),
        }


@dataclass
class GenerationMetadata:
    request_id: str
    cached: bool = False
    processing_time: float = 0.0  # Seconds
    tokens_used: int | None = None
    confidence: float = 0.0
    fallback_used: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "requestId": self.request_id,
            "cached": self.cached,
            "processingTime": round(self.processing_time, 4),
            "tokensUsed": self.tokens_used,
            "confidence": round(self.confidence, 3),
            "fallbackUsed": self.fallback_used,
        }


@dataclass
class GenerationResponse:
    """Outcome of one generation request. Errors are carried, not raised."""

    success: bool
    metadata: GenerationMetadata
    data: Any = None
    error: APIError | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "success": self.success,
            "data": self.data,
            "metadata": self.metadata.to_dict(),
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


@dataclass
class _Completion:
    content: str
    tokens_used: int | None = None


class DeepSeekClient:
    """
    Resilient, cached client for chart generation and data analysis.

    Usage:
        async with DeepSeekClient(DeepSeekConfig(api_key="sk-...")) as client:
            response = await client.generate_chart("Monthly sales for 2024", chart_type="line")
            if response.success:
                render(response.data["config"])
            else:
                logger.error(response.error)

    Testing:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = DeepSeekClient(config, http_client=http)
    """

    def __init__(
        self,
        config: DeepSeekConfig | None = None,
        resilience: ResilienceService | None = None,
        parsing: ResponseParsingService | None = None,
        caching: CachingService | None = None,
        http_client: httpx.AsyncClient | None = None,
        debug: bool = False,
    ):
        self.config = config or DeepSeekConfig()
        self.resilience = resilience or ResilienceService()
        self.parsing = parsing or ResponseParsingService(debug=debug)
        self.caching = caching or CachingService(debug=debug)
        self._debug = debug

        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._request_counter = 0

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
            )
        return self._http_client

    async def generate_chart(
        self,
        prompt: str,
        chart_type: str | None = None,
        template_id: str | None = None,
        use_cache: bool = True,
    ) -> GenerationResponse:
        """
        Generate a Chart.js configuration from a natural-language prompt.

        Args:
            prompt: Description of the data and the desired chart
            chart_type: Chart type hint (bar, line, pie, ...)
            template_id: Prompt template the request came from
            use_cache: Look up and store the result in the semantic cache

        Returns:
            GenerationResponse; data holds {"config": ..., "metadata": ...}
        """
        request_id = self._next_request_id()
        start = time.perf_counter()
        query_type = f"chart:{template_id or 'custom'}"
        caching = use_cache and self.config.enable_caching

        try:
            prompt = self._validate_prompt(prompt, request_id)
            cache_content = f"{chart_type or 'auto'} {prompt}"

            if caching:
                cached = await self.caching.get_semantic_cached_response(query_type, cache_content)
                if cached is not None:
                    self._log(f"CACHE HIT: {request_id} ({query_type})")
                    return self._cached_response(
                        request_id, start, cached, CACHED_CHART_CONFIDENCE
                    )

            messages = [
                {"role": "system", "content": CHART_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Generate Chart.js config for: {prompt}. "
                    f"Chart type: {chart_type or 'auto'}",
                },
            ]
            completion = await self._complete(messages, request_id, "Chart generation")
            result = await self.parsing.parse_chart_response(completion.content)
            data = result.raise_for_error()

            if caching:
                fabricated = result.metadata.strategy in FABRICATING_STRATEGIES
                await self.caching.cache_semantic_response(
                    query_type,
                    cache_content,
                    data,
                    ttl=self.config.cache_ttl,
                    tags=["chart", template_id or "custom"] + (["fallback"] if fabricated else []),
                    metadata=self._cache_metadata(request_id, completion, start, fabricated),
                )

            return self._success(request_id, start, data, completion, result)

        except asyncio.CancelledError as e:
            logger.warning(f"Chart generation {request_id}: {classify_exception(e).code_value}")
            raise
        except Exception as e:
            return self._failure(request_id, start, e, "Chart generation")

    async def analyze_data(self, prompt: str, use_cache: bool = True) -> GenerationResponse:
        """
        Analyze data described in a prompt.

        Returns:
            GenerationResponse; data holds summary, insights, recommendations
            and visualizations
        """
        request_id = self._next_request_id()
        start = time.perf_counter()
        caching = use_cache and self.config.enable_caching

        try:
            prompt = self._validate_prompt(prompt, request_id)

            if caching:
                cached = await self.caching.get_semantic_cached_response("analysis", prompt)
                if cached is not None:
                    self._log(f"CACHE HIT: {request_id} (analysis)")
                    return self._cached_response(
                        request_id, start, cached, CACHED_ANALYSIS_CONFIDENCE
                    )

            messages = [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ]
            completion = await self._complete(messages, request_id, "Data analysis")
            result = await self.parsing.parse_analysis_response(completion.content)
            data = result.raise_for_error()

            if caching:
                fabricated = result.metadata.strategy in FABRICATING_STRATEGIES
                await self.caching.cache_semantic_response(
                    "analysis",
                    prompt,
                    data,
                    ttl=self.config.cache_ttl * 2,
                    tags=["analysis"] + (["fallback"] if fabricated else []),
                    metadata=self._cache_metadata(request_id, completion, start, fabricated),
                )

            return self._success(request_id, start, data, completion, result)

        except asyncio.CancelledError as e:
            logger.warning(f"Data analysis {request_id}: {classify_exception(e).code_value}")
            raise
        except Exception as e:
            return self._failure(request_id, start, e, "Data analysis")

    async def _complete(
        self, messages: list[dict[str, str]], request_id: str, context: str
    ) -> _Completion:
        """Run one chat completion through the breaker and retry loop."""
        if not self.config.api_key:
            raise APIError(
                "DeepSeek API key is not configured",
                ErrorCode.CONFIGURATION_ERROR,
                status=500,
                request_id=request_id,
            )

        body = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": False,
        }

        async def request() -> Any:
            return await self._post_completion(body, request_id)

        raw = await self.resilience.execute_request(request, f"{context} ({request_id})")
        return self._extract_completion(raw, request_id)

    async def _post_completion(self, body: dict[str, Any], request_id: str) -> Any:
        """Execute the actual HTTP request."""
        client = self._get_http_client()
        try:
            response = await client.post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                json=body,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise classify_exception(e, request_id) from e

        return await self.resilience.handle_response(response, request_id)

    @staticmethod
    def _extract_completion(raw: Any, request_id: str) -> _Completion:
        try:
            content = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise APIError(
                "Completion response has no message content",
                ErrorCode.UNEXPECTED_ERROR,
                request_id=request_id,
                details={"original_error": repr(e)},
            ) from e

        if not isinstance(content, str):
            raise APIError(
                f"Completion content is {type(content).__name__}, expected text",
                ErrorCode.UNEXPECTED_ERROR,
                request_id=request_id,
            )

        usage = raw.get("usage") or {}
        return _Completion(content=content, tokens_used=usage.get("total_tokens"))

    @staticmethod
    def _validate_prompt(prompt: Any, request_id: str) -> str:
        if not isinstance(prompt, str) or len(prompt.strip()) < MIN_PROMPT_LENGTH:
            raise APIError(
                f"Invalid prompt: must be at least {MIN_PROMPT_LENGTH} characters",
                ErrorCode.BAD_REQUEST,
                status=400,
                request_id=request_id,
            )
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise APIError(
                f"Prompt too long: max {MAX_PROMPT_LENGTH} characters",
                ErrorCode.BAD_REQUEST,
                status=400,
                request_id=request_id,
            )
        return prompt.strip()

    def _cache_metadata(
        self, request_id: str, completion: _Completion, start: float, fabricated: bool
    ) -> dict[str, Any]:
        return {
            "source": "fallback" if fabricated else "api",
            "request_id": request_id,
            "model": self.config.model,
            "tokens": completion.tokens_used,
            "processing_time": time.perf_counter() - start,
        }

    @staticmethod
    def _cached_response(
        request_id: str, start: float, data: Any, confidence: float
    ) -> GenerationResponse:
        return GenerationResponse(
            success=True,
            data=data,
            metadata=GenerationMetadata(
                request_id=request_id,
                cached=True,
                processing_time=time.perf_counter() - start,
                confidence=confidence,
            ),
        )

    @staticmethod
    def _success(
        request_id: str,
        start: float,
        data: Any,
        completion: _Completion,
        result: ParseResult,
    ) -> GenerationResponse:
        return GenerationResponse(
            success=True,
            data=data,
            metadata=GenerationMetadata(
                request_id=request_id,
                processing_time=time.perf_counter() - start,
                tokens_used=completion.tokens_used,
                confidence=result.metadata.confidence,
                fallback_used=result.metadata.fallback_used,
            ),
        )

    @staticmethod
    def _failure(
        request_id: str, start: float, exc: Exception, context: str
    ) -> GenerationResponse:
        error = classify_exception(exc, request_id)
        if error.request_id is None:
            error.request_id = request_id
        logger.error(f"{context} {request_id} failed: [{error.code_value}] {error.message}")
        return GenerationResponse(
            success=False,
            error=error,
            metadata=GenerationMetadata(
                request_id=request_id,
                processing_time=time.perf_counter() - start,
            ),
        )

    def _next_request_id(self) -> str:
        self._request_counter += 1
        return f"ds-{self._request_counter}-{int(time.time() * 1000)}"

    def get_metrics(self) -> dict[str, Any]:
        """Get metrics of all components."""
        return {
            **self.resilience.get_metrics(),
            "caching": self.caching.get_stats().to_dict(),
            "requests": self._request_counter,
            "config": self.config.to_dict(),
        }

    async def reset_metrics(self) -> None:
        """Reset resilience state and drop cached responses."""
        self.resilience.reset()
        await self.clear_caches()

    async def clear_caches(self) -> None:
        """Clear all cached responses."""
        await self.caching.clear()

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
        self._owns_http_client = True
        await self.caching.destroy()
        logger.debug("DeepSeekClient closed")

    async def __aenter__(self) -> "DeepSeekClient":
        """Async context manager entry."""
        self.caching.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[DeepSeekClient] {message}")
