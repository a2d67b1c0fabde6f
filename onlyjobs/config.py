"""Configuration management."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_HIRING_PLATFORM_DOMAINS = {
    "greenhouse.io",
    "lever.co",
    "workday.com",
    "taleo.net",
    "breezy.hr",
    "ashbyhq.com",
    "jobvite.com",
    "icims.com",
    "smartrecruiters.com",
    "myworkday.com",
    "ultipro.com",
    "successfactors.com",
    "bamboohr.com",
    "applytojob.com",
    "recruiterbox.com",
}

DEFAULT_CONSUMER_MAIL_DOMAINS = {
    "gmail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
}

DEFAULT_ATS_SUBDOMAIN_MARKERS = {
    "mail",
    "email",
    "careers",
    "jobs",
    "recruiting",
    "hire",
}


class Config(BaseModel):
    """Application configuration."""

    db_path: Path = PROJECT_ROOT / "data" / "onlyjobs.sqlite"
    lock_path: Path = Path("/tmp/onlyjobs.lock")
    log_level: str = "INFO"

    # Throttling of classifier/matcher calls
    batch_size: int = Field(default=3, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0)

    # Review gates
    auto_approve_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    needs_review_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # Job matching
    recency_days: int = 90
    fuzzy_exact_score: float = 1.0
    fuzzy_substring_score: float = 0.8
    fuzzy_domain_score: float = 0.5
    fuzzy_candidate_limit: int = 5
    title_similarity_threshold: float = 0.7
    status_tail_size: int = 3

    hiring_platform_domains: set[str] = Field(
        default_factory=lambda: set(DEFAULT_HIRING_PLATFORM_DOMAINS)
    )
    consumer_mail_domains: set[str] = Field(
        default_factory=lambda: set(DEFAULT_CONSUMER_MAIL_DOMAINS)
    )
    ats_subdomain_markers: set[str] = Field(
        default_factory=lambda: set(DEFAULT_ATS_SUBDOMAIN_MARKERS)
    )

    # LLM collaborator
    llm_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    llm_model: str = "google/gemini-2.0-flash-001"
    llm_timeout_seconds: float = 10.0


_config: Optional[Config] = None


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file."""
    global _config

    if _config is not None:
        return _config

    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. "
            "Copy config/config.yaml.example to config/config.yaml and adjust your settings."
        )

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    _config = Config(**data)
    return _config


def get_config() -> Config:
    """Get the loaded configuration."""
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration so the next call reloads it."""
    global _config
    _config = None
