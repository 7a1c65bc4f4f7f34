from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Literal, Optional

from .secrets import get_secret, get_int, get_float, get_bool

Provider = Literal["openai", "gemini"]
NumericInference = Literal["first_row", "full_scan"]

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration of the analysis session."""
    provider: Provider = "openai"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    google_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    temperature: float = 0.2
    max_tokens: int = 1000
    llm_timeout: float = 30.0
    llm_retries: int = 2
    insight_sample_rows: int = 5
    insight_count: int = 5
    numeric_inference: NumericInference = "first_row"
    reset_chat_on_upload: bool = True
    max_file_size_mb: float = 50.0

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def _provider(value: Optional[str]) -> Provider:
    v = (value or "openai").strip().lower()
    return "gemini" if v in {"gemini", "google"} else "openai"


def _inference(value: Optional[str]) -> NumericInference:
    v = (value or "first_row").strip().lower().replace("-", "_")
    return "full_scan" if v in {"full_scan", "strict"} else "first_row"


def load_settings() -> Settings:
    """Read settings from st.secrets / ENV / .env."""
    return Settings(
        provider=_provider(get_secret("LLM_PROVIDER")),
        openai_api_key=get_secret("OPENAI_API_KEY"),
        openai_base_url=get_secret("OPENAI_BASE_URL"),
        openai_model=get_secret("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        google_api_key=get_secret("GOOGLE_API_KEY"),
        gemini_model=get_secret("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
        temperature=get_float("LLM_TEMPERATURE", 0.2),
        max_tokens=get_int("LLM_MAX_TOKENS", 1000),
        llm_timeout=get_float("LLM_TIMEOUT", 30.0),
        llm_retries=max(0, get_int("LLM_RETRIES", 2)),
        insight_sample_rows=max(0, get_int("INSIGHT_SAMPLE_ROWS", 5)),
        insight_count=max(1, get_int("INSIGHT_COUNT", 5)),
        numeric_inference=_inference(get_secret("NUMERIC_INFERENCE")),
        reset_chat_on_upload=get_bool("RESET_CHAT_ON_UPLOAD", True),
        max_file_size_mb=get_float("MAX_FILE_SIZE_MB", 50.0),
    )
