import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass(frozen=True)
class Settings:
    use_ai: bool = False
    ai_only: bool = False
    ai_provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    ai_temperature: float = 0.2
    ai_timeout_seconds: float = 30.0
    ai_default_retry_after: int = 30
    use_trocr: bool = True
    ocr_model_id: str = "microsoft/trocr-base-printed"
    cors_origins: str = "*"
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "Settings":
        provider = _env_str("AI_PROVIDER", "openai").lower()
        return Settings(
            use_ai=_env_flag("USE_AI"),
            ai_only=_env_flag("AI_ONLY"),
            ai_provider=provider if provider in ("openai", "gemini") else "openai",
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com").rstrip("/"),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-1.5-flash"),
            gemini_base_url=_env_str(
                "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
            ).rstrip("/"),
            ai_temperature=_env_float("AI_TEMPERATURE", 0.2),
            ai_timeout_seconds=max(1.0, _env_float("AI_TIMEOUT_SECONDS", 30.0)),
            ai_default_retry_after=max(1, _env_int("AI_DEFAULT_RETRY_AFTER", 30)),
            use_trocr=_env_flag("USE_TROCR", True),
            ocr_model_id=_env_str("OCR_MODEL_ID", "microsoft/trocr-base-printed"),
            cors_origins=_env_str("CORS_ORIGINS", "*"),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or ["*"]
