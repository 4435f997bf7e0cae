"""Settings for codeloop: read from ~/.codeloop/config.yaml, then narrowed by CLI flags."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

DEFAULT_CONFIG_DIR = Path.home() / ".codeloop"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

OLLAMA_DEFAULT_API_BASE = "http://localhost:11434"

ApprovalModeName = Literal["default", "auto_edit", "yolo"]


def is_ollama_model(model: str) -> bool:
    """Return True if the model string uses the Ollama provider prefix."""
    return model.startswith(("ollama/", "ollama_chat/"))


class ConfigError(Exception):
    """The settings file or a CLI override cannot be turned into an AgentConfig."""


class AgentConfig(BaseModel):
    """Model endpoint, sampling, context budget and default approval mode."""

    model_config = ConfigDict(extra="forbid")

    model: str
    api_base: str
    api_key: str | None = None
    https_proxy: str | None = None

    # Model sampling parameters
    temperature: float = 0.0
    max_output_tokens: int = 4096
    top_p: float = 1.0

    # Context management
    max_context_tokens: int = 128000
    compression_ratio: float = 0.9

    # Permission gate
    approval_mode: ApprovalModeName = "default"

    @model_validator(mode="before")
    @classmethod
    def _apply_ollama_defaults(cls, values: dict) -> dict:
        """Ollama models talk to the local daemon unless api_base says otherwise."""
        if isinstance(values, dict) and "api_base" not in values:
            if is_ollama_model(values.get("model", "")):
                values = dict(values)
                values["api_base"] = OLLAMA_DEFAULT_API_BASE
        return values

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base needs an http:// or https:// scheme")
        return v.rstrip("/")

    @field_validator("compression_ratio")
    @classmethod
    def validate_compression_ratio(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("compression_ratio is a fraction of the context window, in (0, 1]")
        return v

    @property
    def compression_threshold(self) -> int:
        """Total-token count above which the conversation is compressed."""
        return int(self.max_context_tokens * self.compression_ratio)

    def __repr__(self) -> str:
        shown = self.model_dump(exclude={"api_key", "https_proxy"})
        shown["api_key"] = "***" if self.api_key else None
        return "AgentConfig(" + ", ".join(f"{k}={v!r}" for k, v in shown.items()) + ")"

    __str__ = __repr__


def _describe_problems(e: ValidationError) -> str:
    lines = []
    for err in e.errors():
        where = ".".join(str(loc) for loc in err["loc"]) or "(top level)"
        lines.append(f"  {where}: {err['msg']}")
    return "\n".join(lines)


def load_config(config_path: Path | None = None) -> AgentConfig:
    """Read the settings file, ~/.codeloop/config.yaml unless ``config_path`` is given.

    Raises ``ConfigError`` naming the file when it is missing, is not a YAML
    mapping, or holds values AgentConfig rejects.
    """
    path = config_path or DEFAULT_CONFIG_FILE

    if not path.exists():
        raise ConfigError(
            f"codeloop has no settings file at {path}\n\n"
            f"Create it with at least a model and the endpoint that serves it:\n"
            f"  model: openai/gpt-4o\n"
            f"  api_base: http://localhost:4000\n\n"
            f"Ollama models (model: ollama_chat/llama3.2) may leave out api_base;\n"
            f"it then points at {OLLAMA_DEFAULT_API_BASE}.\n\n"
            f"Also accepted: api_key, https_proxy, temperature, max_output_tokens,\n"
            f"max_context_tokens, compression_ratio, approval_mode"
        )

    data = yaml.safe_load(path.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must hold a YAML mapping of settings, e.g. \"model: openai/gpt-4o\"")

    try:
        return AgentConfig(**data)
    except ValidationError as e:
        raise ConfigError(
            f"Settings in {path} were rejected:\n{_describe_problems(e)}"
        ) from None


def apply_cli_overrides(
    config: AgentConfig,
    model: str | None = None,
    api_base: str | None = None,
    approval_mode: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> AgentConfig:
    """Layer command line flags over the file settings; flags left unset keep the file value."""
    overrides = {}
    if model is not None:
        overrides["model"] = model
    if api_base is not None:
        overrides["api_base"] = api_base
    if approval_mode is not None:
        overrides["approval_mode"] = approval_mode
    if temperature is not None:
        overrides["temperature"] = temperature
    if max_output_tokens is not None:
        overrides["max_output_tokens"] = max_output_tokens

    if not overrides:
        return config

    try:
        return AgentConfig.model_validate(config.model_dump() | overrides)
    except ValidationError as e:
        raise ConfigError(
            f"Command line settings were rejected:\n{_describe_problems(e)}"
        ) from None
