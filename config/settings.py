"""Configuration management for Wayfarer."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """Connection details for one chat backend."""

    api_key: str = ""
    model: str = ""
    base_url: str = ""


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "openai": ProviderSettings(model="gpt-4o", base_url="https://api.openai.com/v1"),
        "anthropic": ProviderSettings(
            model="claude-sonnet-4-5-20250929", base_url="https://api.anthropic.com"
        ),
        "gemini": ProviderSettings(
            model="gemini-2.0-flash",
            base_url="https://generativelanguage.googleapis.com/v1beta",
        ),
        "openrouter": ProviderSettings(
            model="anthropic/claude-3.5-sonnet", base_url="https://openrouter.ai/api/v1"
        ),
        "ollama": ProviderSettings(model="llama3.2", base_url="http://localhost:11434"),
        "lmstudio": ProviderSettings(model="local-model", base_url="http://localhost:1234/v1"),
    }


class SttSettings(BaseModel):
    """Speech-to-text defaults."""

    provider: Literal["openai", "gemini", "lmstudio"] = "gemini"
    model: str = ""
    language: str = "en"
    api_key: str = ""
    base_url: str = ""
    # "custom" uses api_key above, otherwise the key of the named chat provider
    key_source: str = "custom"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WAYFARER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Chat providers
    active_provider: str = "openai"
    providers: dict[str, ProviderSettings] = Field(default_factory=_default_providers)

    # Speech to text
    stt: SttSettings = Field(default_factory=SttSettings)

    # Request timeouts (seconds)
    chat_timeout: float = 120.0
    list_models_timeout: float = 15.0
    stt_timeout: float = 30.0

    # OpenRouter attribution headers
    app_title: str = "Wayfarer"
    app_referer: str = "https://github.com/wayfarer-browser/wayfarer"

    # Storage
    data_path: str = "./data"

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"

    # Browser Configuration
    browser_headless: bool = False
    browser_port: int = 9222
    browser_executable: str = ""
    browser_user_data_dir: str = "./data/browser_profile"
    browser_use_playwright: bool = True
    browser_start_url: str = "about:blank"

    # Automation timings (seconds)
    automation_warmup: float = 0.15
    automation_settle: float = 0.25
    automation_linger: float = 0.6
    automation_wait_cap: float = 10.0
    automation_command_timeout: float | None = None

    @property
    def data_dir(self) -> Path:
        """Get the data directory path."""
        path = Path(self.data_path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def default_ai_settings(self) -> dict[str, Any]:
        """Seed value for the ``ai_settings`` store key."""
        # Environment overrides (WAYFARER_PROVIDERS__OPENAI__API_KEY=...) only
        # carry the fields they set, so layer them over the built-in table.
        providers = {name: p.model_dump() for name, p in _default_providers().items()}
        for name, provider in self.providers.items():
            providers.setdefault(name, ProviderSettings().model_dump()).update(
                provider.model_dump(exclude_unset=True)
            )
        return {"active_provider": self.active_provider, "providers": providers}

    def default_stt_settings(self) -> dict[str, Any]:
        """Seed value for the ``stt_settings`` store key."""
        return self.stt.model_dump()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
