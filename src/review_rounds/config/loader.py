from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, SettingsError

from review_rounds.core.errors import ConfigError
from review_rounds.core.types import BackendSettings, ProbeKind, RunSettings, StreamFormat

CONFIGS_DIR = Path(__file__).parent.parent.parent.parent / "configs"
ENV_PREFIX = "REVIEW_ROUNDS_"


class BackendConfig(BaseModel):
    """One backend section. Unset fields fall back to the shared values, then the defaults."""

    url: str | None = None
    model: str | None = None
    stream_format: StreamFormat | None = None
    probe: ProbeKind = ProbeKind.TAGS


class RoundsConfig(BaseModel):
    min: int = Field(2, ge=1)
    default: int = 5
    max: int = 6

    @model_validator(mode="after")
    def check_order(self) -> RoundsConfig:
        if not self.min <= self.default <= self.max:
            raise ValueError(
                f"rounds must satisfy min <= default <= max, got {self.min} <= {self.default} <= {self.max}"
            )
        return self


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(5100, ge=1, le=65535)
    cors_origins: str | list[str] = ["http://localhost:5173"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Accept a list, a JSON array string, or a comma-separated string."""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        raise ValueError("cors_origins must be a string or a list of strings")


class ReviewRoundsConfig(BaseSettings):
    """File and environment settings.

    Environment variables take the ``REVIEW_ROUNDS_`` prefix and use ``__`` for
    nested sections, e.g. ``REVIEW_ROUNDS_SOLVER__URL`` or
    ``REVIEW_ROUNDS_ROUNDS__MAX``. They override values from the YAML file.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
    )

    model: str | None = None
    stream_format: StreamFormat | None = None
    solver: BackendConfig = Field(default_factory=BackendConfig)
    reviewer: BackendConfig = Field(default_factory=BackendConfig)
    rounds: RoundsConfig = Field(default_factory=RoundsConfig)
    score_threshold: int = Field(9, ge=0, le=10)
    request_timeout: float = Field(300.0, gt=0)
    server: ServerConfig = Field(default_factory=ServerConfig)
    output_dir: Path | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; the environment wins over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def to_run_settings(self) -> RunSettings:
        defaults = RunSettings()
        backends = {}
        for default in (defaults.solver, defaults.reviewer):
            section: BackendConfig = getattr(self, default.name)
            backends[default.name] = BackendSettings(
                name=default.name,
                url=section.url or default.url,
                model=section.model or self.model or default.model,
                stream_format=section.stream_format or self.stream_format or default.stream_format,
                probe=section.probe,
            )
        return RunSettings(
            solver=backends["solver"],
            reviewer=backends["reviewer"],
            min_rounds=self.rounds.min,
            max_rounds=self.rounds.max,
            default_rounds=self.rounds.default,
            score_threshold=self.score_threshold,
            request_timeout=self.request_timeout,
            host=self.server.host,
            port=self.server.port,
            cors_origins=list(self.server.cors_origins),
            output_dir=self.output_dir,
        )


def clamp_rounds(value: int | str | None, settings: RunSettings) -> int:
    """Coerce a requested round count into [min_rounds, max_rounds].

    Missing or unparseable values fall back to ``default_rounds``; nothing raises.
    """
    if value is None or value == "":
        return settings.default_rounds
    try:
        budget = int(value)
    except (TypeError, ValueError):
        return settings.default_rounds
    return min(max(budget, settings.min_rounds), settings.max_rounds)


def load_settings(path: str | Path | None = None) -> RunSettings:
    """Build settings from defaults, an optional YAML file, then REVIEW_ROUNDS_* env vars."""
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file {str(path)!r} not found")
        try:
            loaded = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file {str(path)!r} is not valid YAML: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {str(path)!r} must contain a mapping")
        data = loaded

    try:
        config = ReviewRoundsConfig(**data)
    except ValidationError as e:
        raise ConfigError(_describe(e)) from e
    except SettingsError as e:
        raise ConfigError(f"Invalid {ENV_PREFIX}* environment value: {e}") from e
    return config.to_run_settings()


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "settings"
        problems.append(f"{location}: {item['msg']}")
    return "Invalid settings: " + "; ".join(problems)


def list_problems() -> list[str]:
    """List available problem preset names."""
    problems_dir = CONFIGS_DIR / "problems"
    if not problems_dir.exists():
        return []
    return sorted(p.stem for p in problems_dir.glob("*.yaml"))


def load_problem(name: str) -> dict:
    """Load a problem preset by name."""
    path = CONFIGS_DIR / "problems" / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Problem {name!r} not found. Available: {list_problems()}")
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict) or not data.get("problem"):
        raise ConfigError(f"Problem preset {name!r} has no 'problem' field")
    return data
