"""Application configuration management."""
import json
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings

OFFER_TTL_SECONDS = 300
ANSWER_TTL_SECONDS = 60
DEFAULT_TTL_SECONDS = 3600
SWEEP_INTERVAL_SECONDS = 60

ICE_GATHERING_DELAY = 1.5
POLLING_INTERVAL = 5.0
MAX_POLL_ATTEMPTS = 60
DATA_CHANNEL_OPEN_DELAY = 0.2
MEDIA_STATE_SEND_DELAY = 0.05

SESSION_ID_MAX_LENGTH = 50


class IceServerConfig(BaseModel):
    """STUN/TURN server entry handed to the peer connection."""

    urls: str | list[str]
    username: Optional[str] = None
    credential: Optional[str] = None


def _default_ice_servers() -> list[IceServerConfig]:
    return [
        IceServerConfig(urls="stun:stun.l.google.com:19302"),
        IceServerConfig(urls="stun:stun1.l.google.com:19302"),
    ]


class CallTimings(BaseModel):
    """Fixed delays and polling budget used while negotiating a call."""

    gathering_window: float = Field(ICE_GATHERING_DELAY, description="Seconds spent collecting local candidates")
    poll_interval: float = Field(POLLING_INTERVAL, description="Seconds between two answer polls")
    max_poll_attempts: int = Field(MAX_POLL_ATTEMPTS, description="Answer polls before giving up")
    channel_open_delay: float = Field(
        DATA_CHANNEL_OPEN_DELAY,
        description="Delay before flushing pending media state on control-channel open",
    )
    media_state_debounce: float = Field(
        MEDIA_STATE_SEND_DELAY,
        description="Delay between a local track toggle and the mediaState send",
    )


class RelayConfig(BaseModel):
    """Relay server configuration."""
    model_config = {"extra": "ignore"}

    host: str = Field("0.0.0.0", description="Application bind address")
    port: int = Field(3000, description="Application bind port")
    log_level: str = Field("INFO", description="Root logging level")
    offer_ttl: int = Field(OFFER_TTL_SECONDS, description="Seconds an unanswered offer survives")
    answer_ttl: int = Field(ANSWER_TTL_SECONDS, description="Seconds an unread answer survives")
    sweep_interval: float = Field(
        SWEEP_INTERVAL_SECONDS,
        description="Seconds between two purges of the in-memory store",
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class ClientConfig(BaseModel):
    """Peer client configuration."""
    model_config = {"extra": "ignore"}

    relay_url: str = Field("http://127.0.0.1:3000", description="Relay base URL")
    app_url: str = Field("http://127.0.0.1:3000", description="Base URL used in share links")
    log_level: str = Field("INFO", description="Root logging level")
    request_timeout: float = Field(10.0, description="Relay HTTP timeout in seconds")
    ice_servers: list[IceServerConfig] = Field(default_factory=_default_ice_servers)
    timings: CallTimings = Field(default_factory=CallTimings)
    video_source: Optional[str] = Field(
        default=None,
        description="aiortc MediaPlayer video file or device (e.g. /dev/video0)",
    )
    video_format: Optional[str] = Field(default=None, description="FFmpeg input format for the video source")
    audio_source: Optional[str] = Field(
        default=None,
        description="aiortc MediaPlayer audio file or device (e.g. default)",
    )
    audio_format: Optional[str] = Field(default=None, description="FFmpeg input format for the audio source")
    state_file: str = Field(
        default_factory=lambda: str(Path.home() / ".peerlink" / "state.json"),
        description="Where the last used session identifier is remembered",
    )


class ConfigFile(BaseModel):
    """Root configuration file structure."""

    relay: RelayConfig = Field(default_factory=RelayConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)


class Settings(BaseSettings):
    """Environment-only settings."""

    kv_rest_api_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KV_REST_API_URL", "kv_rest_api_url"),
    )
    kv_rest_api_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KV_REST_API_TOKEN", "kv_rest_api_token"),
    )
    config_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PEERLINK_CONFIG", "config_path"),
    )

    @property
    def kv_configured(self) -> bool:
        return bool(self.kv_rest_api_url and self.kv_rest_api_token)

    @property
    def kv_partially_configured(self) -> bool:
        return bool(self.kv_rest_api_url or self.kv_rest_api_token) and not self.kv_configured


def _get_config_file_path(settings: Settings) -> Path:
    """Resolve the JSON configuration path (PEERLINK_CONFIG or project root)."""
    if settings.config_path:
        return Path(settings.config_path)
    project_root = Path(__file__).parent.parent.parent
    return project_root / "peerlink.json"


def persist_json(payload: Any, path: Path) -> None:
    """Atomically write JSON to ``path`` (temp file in the same folder, then replace)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            delete=False,
            dir=path.parent,
            suffix=".tmp",
        ) as tmp_file:
            json.dump(payload, tmp_file, indent=2, ensure_ascii=False)
            tmp_name = Path(tmp_file.name)
        os.replace(tmp_name, path)
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(f"Failed to persist {path}: {exc}") from exc


def load_config_file(path: Path) -> ConfigFile:
    """Load and parse configuration from a JSON file; defaults when it is absent."""
    if not path.exists():
        return ConfigFile()

    try:
        with open(path, "r", encoding="utf-8") as f:
            config_data = json.load(f)
        return ConfigFile(**config_data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}")
    except Exception as e:
        raise RuntimeError(f"Error loading configuration from {path}: {e}")


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return cached environment settings."""

    return Settings()


@lru_cache(maxsize=None)
def get_config() -> ConfigFile:
    """Return the cached configuration file (blocking, use at startup only)."""

    return load_config_file(_get_config_file_path(get_settings()))


def get_relay_config() -> RelayConfig:
    return get_config().relay


def get_client_config() -> ClientConfig:
    return get_config().client
