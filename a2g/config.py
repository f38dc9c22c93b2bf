from __future__ import annotations

import logging
import os
import pathlib as pl
import typing as t

import pydantic as pydt
import yaml

from a2g.backend.openai import OpenAIConfig
from a2g.exceptions import ConfigError
from a2g.types import BaseModel
from a2g.types import PathLikes

logger = logging.getLogger("a2g.config")

CONFIG_VERSION = "0.1.0"
DEFAULT_ENDPOINT_ID = "ep-gemini-default"
DEFAULT_MODEL_ID = "gemini-2.0-flash"
API_KEY_ENV = "A2G_API_KEY"
HOME_ENV = "A2G_HOME"


def home_dir() -> pl.Path:
    """A2G home directory, `~/.a2g-cli` unless `A2G_HOME` is set."""
    return pl.Path(os.environ.get(HOME_ENV) or pl.Path.home() / ".a2g-cli").expanduser()


def config_path() -> pl.Path:
    return home_dir() / "config.yml"


def logs_dir() -> pl.Path:
    return home_dir() / "logs"


class EndpointConfig(BaseModel):
    """One OpenAI-compatible endpoint."""

    id: t.Annotated[str, pydt.Field(min_length=1)]
    name: str
    base_url: t.Annotated[str, pydt.Field(min_length=1)]
    api_key: str = ""
    model: t.Annotated[str, pydt.Field(min_length=1)]
    timeout: t.Annotated[float, pydt.Field(gt=0)] = 60.0
    max_retries: t.Annotated[int, pydt.Field(ge=0)] = 2
    description: str | None = None

    def to_openai_config(self) -> OpenAIConfig:
        return OpenAIConfig(
            api_key=self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )


class Settings(BaseModel):
    """Behavior switches of the chat client."""

    stream_response: bool = True
    """Stream plain chat responses fragment by fragment."""

    show_thinking: bool = True
    """Print thinking segments (dimmed) instead of hiding them."""

    tools_enabled: bool = True
    """Offer the file tools to the backend."""

    auto_approve: bool = False
    """Allow `write_file` without starting the chat read-only."""

    parallel_tools: bool = False
    """Run the tool calls of one reply concurrently."""

    max_tool_rounds: t.Annotated[int, pydt.Field(ge=1, le=50)] = 8
    """Backend requests allowed per question when tools are enabled."""

    debug_mode: bool = False
    """Log at DEBUG level to the console and the log file."""

    workspace: str = "."
    """Directory the file tools are confined to."""


class A2GConfig(BaseModel):
    """Complete client configuration.

    Immutable; use `with_endpoint` / `with_settings` to derive changed
    copies and `save_config` to persist them.
    """

    version: str = CONFIG_VERSION
    current_endpoint: str = DEFAULT_ENDPOINT_ID
    endpoints: t.Annotated[list[EndpointConfig], pydt.Field(min_length=1)]
    settings: Settings = pydt.Field(default_factory=Settings)
    system_prompt: str | None = None

    @pydt.model_validator(mode="after")
    def val_endpoints(self) -> t.Self:
        ids = [endpoint.id for endpoint in self.endpoints]
        duplicates = sorted({eid for eid in ids if ids.count(eid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate endpoint ids: {', '.join(duplicates)}")
        if self.current_endpoint not in ids:
            raise ValueError(f"Current endpoint {self.current_endpoint!r} is not configured")
        return self

    @property
    def endpoint(self) -> EndpointConfig:
        """The currently selected endpoint."""
        return next(ep for ep in self.endpoints if ep.id == self.current_endpoint)

    def with_endpoint(self, endpoint_id: str) -> A2GConfig:
        if endpoint_id not in {ep.id for ep in self.endpoints}:
            known = ", ".join(ep.id for ep in self.endpoints)
            raise ConfigError(f"Unknown endpoint {endpoint_id!r}; configured: {known}")
        return self.model_copy(update={"current_endpoint": endpoint_id})

    def with_settings(self, **changes: t.Any) -> A2GConfig:
        try:
            settings = Settings.model_validate({**self.settings.model_dump(), **changes})
        except pydt.ValidationError as exc:
            raise ConfigError(f"Invalid settings: {_summarize(exc)}") from exc
        return self.model_copy(update={"settings": settings})


def default_config() -> A2GConfig:
    return A2GConfig(
        endpoints=[
            EndpointConfig(
                id=DEFAULT_ENDPOINT_ID,
                name="Gemini 2.0 Flash (Default)",
                base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
                model=DEFAULT_MODEL_ID,
                description="Google Gemini 2.0 Flash via the OpenAI-compatible API",
            )
        ],
    )


def _summarize(exc: pydt.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'config'}: {err['msg']}"
        for err in exc.errors()
    )


def load_config(path: PathLikes | None = None) -> A2GConfig:
    """Load and validate the YAML configuration.

    The `A2G_API_KEY` environment variable, when set, replaces the API key
    of the current endpoint.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    fpath = pl.Path(path) if path is not None else config_path()
    if not fpath.is_file():
        raise ConfigError(f"No configuration at {fpath}; run `a2g config init` first")

    try:
        with open(fpath, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read configuration {fpath}: {exc}") from exc

    try:
        config = A2GConfig.model_validate(raw)
    except pydt.ValidationError as exc:
        raise ConfigError(f"Invalid configuration {fpath}: {_summarize(exc)}") from exc
    logger.debug("Loaded configuration from %s", fpath)

    api_key = os.environ.get(API_KEY_ENV)
    if api_key:
        logger.debug("Using API key from %s for endpoint %s", API_KEY_ENV, config.current_endpoint)
        endpoints = [
            ep.model_copy(update={"api_key": api_key}) if ep.id == config.current_endpoint else ep
            for ep in config.endpoints
        ]
        config = config.model_copy(update={"endpoints": endpoints})
    return config


def save_config(config: A2GConfig, path: PathLikes | None = None) -> pl.Path:
    """Write the configuration as YAML, creating parent directories."""
    fpath = pl.Path(path) if path is not None else config_path()
    try:
        fpath.parent.mkdir(parents=True, exist_ok=True)
        with open(fpath, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                config.model_dump(mode="json", exclude_none=True),
                f,
                sort_keys=False,
                allow_unicode=True,
            )
    except OSError as exc:
        raise ConfigError(f"Cannot write configuration {fpath}: {exc}") from exc
    logger.debug("Saved configuration to %s", fpath)
    return fpath


def is_initialized() -> bool:
    return home_dir().is_dir() and config_path().is_file()


def init_home() -> A2GConfig:
    """Create the home directory layout and a default config if missing.

    Returns:
        The existing or newly written configuration.
    """
    try:
        logs_dir().mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"Cannot create {home_dir()}: {exc}") from exc

    if config_path().is_file():
        return load_config()
    config = default_config()
    save_config(config)
    logger.info("Initialized %s", home_dir())
    return config


def reset_config() -> A2GConfig:
    """Overwrite the configuration with defaults."""
    config = default_config()
    save_config(config)
    return config
