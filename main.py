"""
Vizom API entry point
Runs the DeepSeek chart-generation proxy with uvicorn
"""

import sys
from datetime import timedelta

import uvicorn
from loguru import logger

from vizom.server import create_app
from vizom.services.caching import CachingService
from vizom.services.circuit_breaker import CircuitBreaker
from vizom.services.client import DeepSeekClient
from vizom.services.resilience import ResilienceService
from vizom.services.retry import RetryHandler
from vizom.settings import global_settings


def build_client() -> DeepSeekClient:
    """Wire the client from settings."""
    settings = global_settings
    return DeepSeekClient(
        config=settings.deepseek_config(),
        resilience=ResilienceService(
            CircuitBreaker("deepseek", settings.circuit_breaker_config()),
            RetryHandler(settings.retry_config()),
        ),
        caching=CachingService(
            settings.cache_config(),
            semantic_ttl=timedelta(seconds=settings.semantic_cache_ttl),
        ),
    )


def main() -> None:
    """Configure logging and serve the API."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())

    if not global_settings.deepseek_api_key:
        logger.warning("DEEPSEEK_API_KEY not configured, generation requests will fail")

    app = create_app(build_client(), global_settings.origins)

    logger.info(f"Starting Vizom API on {global_settings.host}:{global_settings.port}")
    uvicorn.run(
        app,
        host=global_settings.host,
        port=global_settings.port,
        log_level=global_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
