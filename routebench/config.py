"""
Configuration module for routebench.
Handles environment variables and application settings.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project paths
PACKAGE_ROOT = Path(__file__).parent
DATASETS_DIR = PACKAGE_ROOT / "datasets"
BUILTIN_SUITES_PATH = DATASETS_DIR / "suites.json"
RESULTS_DIR = Path.cwd() / "results"
REPORTS_DIR = RESULTS_DIR / "reports"


class ApiConfig(BaseModel):
    """Routing API connection settings."""

    api_key: Optional[str] = Field(default=None)
    base_url: str = Field(default="https://openrouter.ai/api/v1")
    referer: str = Field(default="https://github.com/routebench/routebench")
    title: str = Field(default="routebench Performance Test")
    user_agent: str = Field(default="routebench")
    catalog_attempts: int = Field(default=2, ge=1)

    @classmethod
    def from_env(cls) -> "ApiConfig":
        """Load API configuration from environment variables."""
        return cls(
            api_key=os.getenv("OPENROUTER_API_KEY"),
            base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        )


class TimeoutConfig(BaseModel):
    """Wall-clock timeouts in seconds."""

    request: float = Field(default=60.0, gt=0)
    metadata: float = Field(default=15.0, gt=0)
    validation: float = Field(default=10.0, gt=0)

    @classmethod
    def from_env(cls) -> "TimeoutConfig":
        """Load the run timeout override from the environment."""
        request = os.getenv("ROUTEBENCH_REQUEST_TIMEOUT")
        if request:
            return cls(request=float(request))
        return cls()


class ScoringConfig(BaseModel):
    """Default weights for composite recommendation scoring."""

    speed_weight: float = Field(default=0.4)
    latency_weight: float = Field(default=0.3)
    cost_weight: float = Field(default=0.3)


class BenchmarkConfig(BaseModel):
    """Benchmark execution configuration."""

    default_max_tokens: int = Field(default=512, ge=1)
    recommend_max_tokens: int = Field(default=256, ge=1)
    mini_suite_size: int = Field(default=3, ge=1)
    default_suite_id: str = Field(default="general-purpose-v1")
    chars_per_token: int = Field(default=4, ge=1)
    fallback_cost_per_1k: float = Field(default=0.002, ge=0)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)


class HistoryConfig(BaseModel):
    """Run history retention settings."""

    save_history: bool = Field(default=True)
    max_items: int = Field(default=100)


class AppConfig(BaseModel):
    """Main application configuration."""

    api: ApiConfig = Field(default_factory=ApiConfig.from_env)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig.from_env)
    benchmark: BenchmarkConfig = Field(default_factory=BenchmarkConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    return config
