import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from vizom.services.cache import CacheConfig
from vizom.services.circuit_breaker import CircuitBreakerConfig
from vizom.services.client import DeepSeekConfig
from vizom.services.retry import RetryConfig

load_dotenv()


class Settings(BaseModel):
    # DeepSeek API Configuration
    deepseek_api_key: str = Field(default="", alias="DEEPSEEK_API_KEY")
    deepseek_base_url: str = Field(
        default="https://api.deepseek.com/v1", alias="DEEPSEEK_BASE_URL"
    )
    deepseek_model: str = Field(default="deepseek-chat", alias="DEEPSEEK_MODEL")
    deepseek_max_tokens: int = Field(default=4000, alias="DEEPSEEK_MAX_TOKENS")
    deepseek_temperature: float = Field(default=0.7, alias="DEEPSEEK_TEMPERATURE")
    deepseek_timeout: float = Field(default=30.0, alias="DEEPSEEK_TIMEOUT")

    # Cache Configuration
    cache_max_size: int = Field(default=50 * 1024 * 1024, alias="CACHE_MAX_SIZE")
    cache_max_entries: int = Field(default=1000, alias="CACHE_MAX_ENTRIES")
    cache_default_ttl: float = Field(default=300.0, alias="CACHE_DEFAULT_TTL")
    cache_cleanup_interval: float = Field(default=60.0, alias="CACHE_CLEANUP_INTERVAL")
    cache_compression_threshold: int = Field(
        default=1024, alias="CACHE_COMPRESSION_THRESHOLD"
    )
    cache_priority_levels: int = Field(default=3, alias="CACHE_PRIORITY_LEVELS")
    semantic_cache_ttl: float = Field(default=600.0, alias="SEMANTIC_CACHE_TTL")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_timeout: float = Field(default=60.0, alias="CIRCUIT_RESET_TIMEOUT")
    circuit_half_open_max_requests: int | None = Field(
        default=None, alias="CIRCUIT_HALF_OPEN_MAX_REQUESTS"
    )

    # Retry Configuration
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=10.0, alias="RETRY_MAX_DELAY")
    retry_backoff_factor: float = Field(default=2.0, alias="RETRY_BACKOFF_FACTOR")

    # Server Configuration
    allow_origins: str = Field(default="*", alias="ALLOW_ORIGINS")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def origins(self) -> list[str]:
        """ALLOW_ORIGINS as a list (comma separated)."""
        return [origin.strip() for origin in self.allow_origins.split(",") if origin.strip()]

    def deepseek_config(self) -> DeepSeekConfig:
        return DeepSeekConfig(
            api_key=self.deepseek_api_key,
            base_url=self.deepseek_base_url,
            model=self.deepseek_model,
            max_tokens=self.deepseek_max_tokens,
            temperature=self.deepseek_temperature,
            timeout=self.deepseek_timeout,
            cache_ttl=timedelta(seconds=self.cache_default_ttl),
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            max_size=self.cache_max_size,
            max_entries=self.cache_max_entries,
            default_ttl=timedelta(seconds=self.cache_default_ttl),
            cleanup_interval=timedelta(seconds=self.cache_cleanup_interval),
            compression_threshold=self.cache_compression_threshold,
            priority_levels=self.cache_priority_levels,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout=timedelta(seconds=self.circuit_reset_timeout),
            half_open_max_requests=self.circuit_half_open_max_requests,
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.retry_max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_factor=self.retry_backoff_factor,
        )


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Validate settings from environment variables (os.environ by default)."""
    source = os.environ if environ is None else environ
    names = {field.alias for field in Settings.model_fields.values() if field.alias}
    return Settings.model_validate({k: v for k, v in source.items() if k in names and v != ""})


global_settings = load_settings()
