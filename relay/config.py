"""
Relay service configuration.

One process serves every tenant: the telephony side connects to
ws://HOST:PORT/WS_PATH?client=<tenant> and each accepted call opens its own
Gemini Live socket with that tenant's API key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import structlog
from dotenv import load_dotenv

# Load .env if present (optional)
load_dotenv()

logger = structlog.get_logger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


RESAMPLE_MODES = {"naive", "polyphase"}


@dataclass(frozen=True)
class Config:
    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    WS_PATH: str = os.getenv("WS_PATH", "/stream")
    HEALTH_PATH: str = os.getenv("HEALTH_PATH", "/health")

    DEBUG: bool = _env_bool("DEBUG", False)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "console")  # console | json

    # Tenants
    DEFAULT_TENANT: str = os.getenv("DEFAULT_TENANT", "goldstar")
    TENANTS_FILE: str = os.getenv("TENANTS_FILE", "")

    # Gemini Live
    GEMINI_WS_URL: str = os.getenv(
        "GEMINI_WS_URL",
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent",
    )
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")
    # Seconds to wait for the Gemini socket to open; 0 waits until the caller hangs up
    AI_CONNECT_TIMEOUT: float = float(os.getenv("AI_CONNECT_TIMEOUT", "0"))

    # Audio
    TELEPHONY_SR: int = int(os.getenv("TELEPHONY_SR", "8000"))  # Twilio mu-law in/out
    GEMINI_INPUT_SR: int = int(os.getenv("GEMINI_INPUT_SR", "16000"))  # Gemini mic input
    GEMINI_OUTPUT_SR: int = int(os.getenv("GEMINI_OUTPUT_SR", "24000"))  # Gemini audio output
    RESAMPLE_MODE: str = os.getenv("RESAMPLE_MODE", "naive")

    @property
    def model_uri(self) -> str:
        if self.GEMINI_MODEL.startswith("models/"):
            return self.GEMINI_MODEL
        return f"models/{self.GEMINI_MODEL}"

    def gemini_url(self, api_key: str) -> str:
        return f"{self.GEMINI_WS_URL}?key={api_key}"

    @classmethod
    def validate(cls, cfg: "Config") -> None:
        if not cfg.WS_PATH.startswith("/"):
            raise ValueError("WS_PATH must start with '/' (e.g. /stream)")

        if not cfg.HEALTH_PATH.startswith("/"):
            raise ValueError("HEALTH_PATH must start with '/' (e.g. /health)")

        if cfg.HEALTH_PATH == cfg.WS_PATH:
            raise ValueError("HEALTH_PATH and WS_PATH must differ")

        if cfg.RESAMPLE_MODE not in RESAMPLE_MODES:
            raise ValueError(
                f"RESAMPLE_MODE must be one of {sorted(RESAMPLE_MODES)}, got {cfg.RESAMPLE_MODE!r}"
            )

        if cfg.AI_CONNECT_TIMEOUT < 0:
            raise ValueError("AI_CONNECT_TIMEOUT must be >= 0")

        if (cfg.TELEPHONY_SR, cfg.GEMINI_INPUT_SR, cfg.GEMINI_OUTPUT_SR) != (8000, 16000, 24000) \
                and cfg.RESAMPLE_MODE == "naive":
            raise ValueError("naive resampling only supports 8000/16000/24000 Hz rates")

    def log_config(self) -> None:
        logger.info(
            "Relay configuration",
            server=f"ws://{self.HOST}:{self.PORT}{self.WS_PATH}",
            health=self.HEALTH_PATH,
            default_tenant=self.DEFAULT_TENANT,
            tenants_file=self.TENANTS_FILE or None,
            gemini_model=self.model_uri,
            audio_sr=f"telephony={self.TELEPHONY_SR}Hz, "
            f"gemini_in={self.GEMINI_INPUT_SR}Hz, gemini_out={self.GEMINI_OUTPUT_SR}Hz",
            resample_mode=self.RESAMPLE_MODE,
            ai_connect_timeout=self.AI_CONNECT_TIMEOUT or None,
            debug=self.DEBUG,
        )
