"""User configuration: ``config.toml`` layered over validated defaults."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from platformdirs import user_config_path
from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
import tomllib

from .exceptions import ConfigValidationError
from .models import Model

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = user_config_path("llamadesk")
CONFIG_PATH = CONFIG_DIR / "config.toml"

LOCAL_HOSTS = ["localhost", "127.0.0.1", "::1"]


def _required_text(value: Any) -> str:
    # TOML integers are accepted where a model id or name is expected.
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("must be a non-empty string")
    return value.strip()


def _log_level(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("must be a level name such as INFO")
    return value.strip().upper()


Text = Annotated[str, BeforeValidator(_required_text)]
LogLevel = Annotated[
    Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
    BeforeValidator(_log_level),
]


class AppConfig(BaseModel):
    title: Text = "LlamaDesk"


class LlamaCppConfig(BaseModel):
    """How ``llama-cli`` is located and invoked."""

    llama_cli_path: Text = "llama-cli"
    extra_args: list[str] = Field(
        default_factory=lambda: ["--no-display-prompt", "-no-cnv"]
    )
    timeout: int = Field(default=600, ge=1, le=86_400)


class OllamaConfig(BaseModel):
    host: Text = "http://localhost:11434"
    timeout: int = Field(default=120, ge=1, le=3600)
    retries: int = Field(default=2, ge=0, le=10)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0, le=60.0)


class BackendConfig(BaseModel):
    kind: Literal["llama_cpp", "ollama"] = "llama_cpp"
    llama_cpp: LlamaCppConfig = Field(default_factory=LlamaCppConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)


class ModelEntryConfig(BaseModel):
    """A ``[[models]]`` entry. ``path`` is only used by the llama.cpp backend."""

    id: Text
    name: Text
    path: str = ""
    size_gb: float = Field(default=0.0, ge=0.0)


class SecurityConfig(BaseModel):
    allow_remote_hosts: bool = False
    allowed_hosts: list[str] = Field(default_factory=lambda: list(LOCAL_HOSTS))

    @field_validator("allowed_hosts")
    @classmethod
    def _lowercase_hosts(cls, hosts: list[str]) -> list[str]:
        cleaned = [host.strip().lower() for host in hosts if host.strip()]
        if not cleaned:
            raise ValueError("allowed_hosts needs at least one entry")
        return cleaned


class LoggingConfig(BaseModel):
    level: LogLevel = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: Text = "~/.local/state/llamadesk/app.log"


class KeybindsConfig(BaseModel):
    """Action name to key. Enter in the prompt input always sends."""

    stop_generation: Text = "escape"
    new_conversation: Text = "ctrl+n"
    quit: Text = "ctrl+q"


def _bootstrap_models() -> list[ModelEntryConfig]:
    return [
        ModelEntryConfig(
            id="1",
            name="Llama 3 8B",
            path="../models/llama3-8b.gguf",
            size_gb=4.7,
        )
    ]


class Config(BaseModel):
    app: AppConfig = Field(default_factory=AppConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    models: list[ModelEntryConfig] = Field(default_factory=_bootstrap_models)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    keybinds: KeybindsConfig = Field(default_factory=KeybindsConfig)

    @field_validator("models")
    @classmethod
    def _model_ids_unique(
        cls, entries: list[ModelEntryConfig]
    ) -> list[ModelEntryConfig]:
        ids = [entry.id for entry in entries]
        duplicates = sorted({model_id for model_id in ids if ids.count(model_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate model ids: {', '.join(duplicates)}")
        return entries

    @model_validator(mode="after")
    def _ollama_host_allowed(self) -> Config:
        """Only local Ollama hosts unless remote hosts are explicitly allowed."""
        if self.backend.kind == "ollama":
            _check_ollama_host(self.backend.ollama.host, self.security)
        return self


def _check_ollama_host(host: str, security: SecurityConfig) -> None:
    url = urlparse(host)
    if url.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Ollama host {host!r} must be an http(s) URL")
    hostname = (url.hostname or "").lower()
    if not hostname:
        raise ValueError(f"Ollama host {host!r} has no hostname")
    if not security.allow_remote_hosts and hostname not in security.allowed_hosts:
        raise ValueError(
            f"Ollama host {hostname!r} is not allowed; set "
            "security.allow_remote_hosts or extend security.allowed_hosts"
        )


DEFAULT_CONFIG: dict[str, Any] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    directory = CONFIG_DIR if config_dir is None else config_dir
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Cannot create config directory %s: %s", directory, exc)
    return directory


def _overlay(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge tables key by key. Arrays such as ``[[models]]`` replace defaults."""
    result = deepcopy(defaults)
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _overlay(current, value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    if os.name == "posix":
        try:
            path.chmod(0o600)
        except OSError as exc:
            LOGGER.warning("Cannot restrict %s to 0600: %s", path, exc)
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Return the validated configuration as plain dicts.

    An invalid file is reported and replaced by the defaults so the app can
    still start.
    """
    path = CONFIG_PATH if config_path is None else config_path
    merged = _overlay(DEFAULT_CONFIG, _read_toml(path))
    try:
        return Config.model_validate(merged).model_dump()
    except PydanticValidationError as exc:
        LOGGER.warning("Invalid config %s, falling back to defaults: %s", path, exc)
        return deepcopy(DEFAULT_CONFIG)
    except (TypeError, AttributeError) as exc:
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def models_from_config(config: dict[str, Any]) -> list[Model]:
    """Model registry source backed by the ``[[models]]`` array, in file order."""
    return [
        Model(
            id=str(entry["id"]),
            name=str(entry["name"]),
            path=str(entry.get("path", "")),
            size_gb=float(entry.get("size_gb", 0.0)),
        )
        for entry in config.get("models", [])
    ]
