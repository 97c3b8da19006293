"""Configuration management for API keys and settings."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from callcoach.prompt import FEEDBACK_PROMPT, SUMMARY_PROMPT
from callcoach.providers import parse_selector

# config.py is in callcoach/, .env is in project root
load_dotenv(Path(__file__).parent.parent / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Config:
    """Application configuration from environment variables."""

    # Cycle settings
    FEEDBACK_INTERVAL_MS: int = _env_int("FEEDBACK_INTERVAL_MS", 15000)
    MAX_TRANSCRIPTIONS: int = _env_int("MAX_TRANSCRIPTIONS", 100)
    DATA_DIR: str = os.getenv("DATA_DIR", str(Path.cwd() / "data"))

    # Speech-to-text (whisper.cpp server compatible)
    WHISPER_SERVER_URL: str = os.getenv("WHISPER_SERVER_URL", "http://127.0.0.1:8080/inference")
    CONVERTER: str = os.getenv("CONVERTER", "sox")  # "sox" or "numpy"
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "90"))

    # Feedback model, as "provider:model"
    FEEDBACK_MODEL: str = os.getenv("FEEDBACK_MODEL", "openrouter:google/gemini-2.0-flash-001")
    FEEDBACK_PROMPT: str = os.getenv("FEEDBACK_PROMPT", FEEDBACK_PROMPT)
    SUMMARY_PROMPT: str = os.getenv("SUMMARY_PROMPT", SUMMARY_PROMPT)
    SESSION_SUMMARY: bool = _env_bool("SESSION_SUMMARY", True)
    SUMMARY_WINDOW: int = _env_int("SUMMARY_WINDOW", 0)  # 0 = whole ledger

    # Producer commands
    LOCAL_CAPTURE_CMD: str = os.getenv("LOCAL_CAPTURE_CMD", "python -m callcoach.mic_capture --sr 16000 --ch 1")
    REMOTE_CAPTURE_CMD: str = os.getenv("REMOTE_CAPTURE_CMD", "swift run SystemAudioCapture")

    # Provider credentials
    OPENROUTER_API_KEY: Optional[str] = os.getenv("OPENROUTER_API_KEY")
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def settings(cls, **overrides) -> "SessionSettings":
        """Snapshot the configuration, applying non-None overrides (e.g. CLI flags)."""
        values = dict(
            interval_ms=cls.FEEDBACK_INTERVAL_MS,
            data_dir=cls.DATA_DIR,
            max_transcriptions=cls.MAX_TRANSCRIPTIONS,
            whisper_url=cls.WHISPER_SERVER_URL,
            converter=cls.CONVERTER,
            model=cls.FEEDBACK_MODEL,
            feedback_prompt=cls.FEEDBACK_PROMPT,
            summary_prompt=cls.SUMMARY_PROMPT,
            session_summary=cls.SESSION_SUMMARY,
            summary_window=cls.SUMMARY_WINDOW,
            local_command=cls.LOCAL_CAPTURE_CMD,
            remote_command=cls.REMOTE_CAPTURE_CMD,
            http_timeout=cls.HTTP_TIMEOUT_SECONDS,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SessionSettings(**values)

    @classmethod
    def api_key_for(cls, provider: str) -> Optional[str]:
        return {
            "openrouter": cls.OPENROUTER_API_KEY,
            "openai": cls.OPENAI_API_KEY,
            "anthropic": cls.ANTHROPIC_API_KEY,
            "gemini": cls.GEMINI_API_KEY,
        }.get(provider)

    @classmethod
    def validate(cls, settings: "SessionSettings") -> list[str]:
        """Validate configuration and return list of problems that prevent a session."""
        problems = []

        if settings.interval_ms <= 0:
            problems.append("interval must be a positive number of milliseconds")
        if settings.max_transcriptions <= 0:
            problems.append("max transcriptions must be positive")
        if settings.converter not in ("sox", "numpy"):
            problems.append(f"unknown converter '{settings.converter}' (expected 'sox' or 'numpy')")
        try:
            parse_selector(settings.model)
        except ValueError as e:
            problems.append(str(e))

        return problems

    @classmethod
    def missing_credentials(cls, settings: "SessionSettings") -> list[str]:
        """Missing keys only degrade feedback to empty text, so these are warnings."""
        try:
            provider, _ = parse_selector(settings.model)
        except ValueError:
            return []
        if provider != "ollama" and not cls.api_key_for(provider):
            return [f"{provider.upper()}_API_KEY is not set (required for model '{settings.model}')"]
        return []


@dataclass(frozen=True)
class SessionSettings:
    """Immutable per-session configuration, read once at startup."""
    interval_ms: int = 15000
    data_dir: str = "data"
    max_transcriptions: int = 100
    whisper_url: str = "http://127.0.0.1:8080/inference"
    converter: str = "sox"
    model: str = "openrouter:google/gemini-2.0-flash-001"
    feedback_prompt: str = FEEDBACK_PROMPT
    summary_prompt: str = SUMMARY_PROMPT
    session_summary: bool = True
    summary_window: int = 0
    local_command: str = "python -m callcoach.mic_capture --sr 16000 --ch 1"
    remote_command: str = "swift run SystemAudioCapture"
    http_timeout: float = 90.0

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0
