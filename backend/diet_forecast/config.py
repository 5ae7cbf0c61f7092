"""
Runtime settings for the forecast service, read from environment variables.

Service endpoints follow the same env-override pattern as the assistant endpoints
(URL + model + key). Pipeline limits are fixed and grouped in PipelineLimits so they
can be passed to the generator and aggregator explicitly.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError

BACKEND_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BACKEND_DIR / "data" / "forecast_cache.db"
DEFAULT_FILE_CACHE_DIR = BACKEND_DIR / ".cache"

CACHE_BACKENDS = ("sqlite", "file", "memory")


@dataclass(frozen=True)
class PipelineLimits:
    # Regions with more districts than this are generated in batches
    large_region_threshold: int = 10
    batch_size: int = 5
    batch_concurrency: int = 2
    max_generation_attempts: int = 3
    base_temperature: float = 0.5
    temperature_step: float = 0.2
    # Max spread (percentage points) for a district to count as "too uniform"
    uniform_spread: float = 5.0
    news_budget_main: int = 4000
    news_budget_districts: int = 800
    news_budget_batch: int = 1000
    news_budget_commentary: int = 500
    commentary_max_chars: int = 200
    min_regions_for_aggregate: int = 3
    seat_band: int = 10
    max_notable_districts: int = 10


@dataclass(frozen=True)
class Settings:
    perplexity_api_key: str = ""
    perplexity_url: str = "https://api.perplexity.ai/chat/completions"
    perplexity_model: str = "sonar"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "gemma3:4b"
    cache_backend: str = "sqlite"
    cache_path: Optional[Path] = None
    reference_path: Optional[Path] = None
    candidates_path: Optional[Path] = None
    refresh_concurrency: int = 3
    http_timeout: float = 120.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            value = (env.get(name) or "").strip()
            return Path(value) if value else None

        backend = (env.get("DIET_FORECAST_CACHE_BACKEND") or "sqlite").strip().lower()
        if backend not in CACHE_BACKENDS:
            raise ConfigurationError(
                f"DIET_FORECAST_CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}, got {backend!r}"
            )
        try:
            concurrency = int(env.get("DIET_FORECAST_REFRESH_CONCURRENCY") or 3)
            timeout = float(env.get("DIET_FORECAST_HTTP_TIMEOUT") or 120.0)
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        return cls(
            perplexity_api_key=(env.get("PERPLEXITY_API_KEY") or "").strip(),
            perplexity_url=(env.get("PERPLEXITY_API_URL") or cls.perplexity_url).rstrip("/"),
            perplexity_model=env.get("PERPLEXITY_MODEL") or cls.perplexity_model,
            ollama_url=(env.get("OLLAMA_URL") or cls.ollama_url).rstrip("/"),
            ollama_model=env.get("OLLAMA_MODEL") or cls.ollama_model,
            cache_backend=backend,
            cache_path=_path("DIET_FORECAST_CACHE_PATH"),
            reference_path=_path("DIET_FORECAST_REFERENCE_PATH"),
            candidates_path=_path("DIET_FORECAST_CANDIDATES_PATH"),
            refresh_concurrency=max(1, concurrency),
            http_timeout=timeout,
            log_level=(env.get("DIET_FORECAST_LOG_LEVEL") or "INFO").upper(),
        )

    def require_news_credentials(self) -> str:
        """Return the search-service key or fail; there is no fallback for a missing key."""
        if not self.perplexity_api_key:
            raise ConfigurationError("PERPLEXITY_API_KEY is not set")
        return self.perplexity_api_key
