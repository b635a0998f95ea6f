"""Configuration Management Package"""

import json
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from loguru import logger

from gitgen import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_TEMPERATURE
from gitgen.llm.base import LLMError
from gitgen.llm.dialect import DialectParameters, model_name_error
from gitgen.llm.transport import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT

MIN_OUTPUT_TOKENS = 100
MAX_OUTPUT_TOKENS = 8000
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
API_KEY_VISIBLE_CHARS = 8

ENV_BASE_URL = "GITGEN_BASEURL"
ENV_MODEL = "GITGEN_MODEL"
ENV_API_KEY = "GITGEN_APIKEY"
ENV_REQUIRES_AUTH = "GITGEN_REQUIRESAUTH"
ENV_USE_LEGACY_MAX_TOKENS = "GITGEN_OPENAI_USE_LEGACY_MAX_TOKENS"
ENV_TEMPERATURE = "GITGEN_TEMPERATURE"
ENV_MAX_OUTPUT_TOKENS = "GITGEN_MAX_OUTPUT_TOKENS"

ENV_VARS = (
    ENV_BASE_URL, ENV_MODEL, ENV_API_KEY, ENV_REQUIRES_AUTH,
    ENV_USE_LEGACY_MAX_TOKENS, ENV_TEMPERATURE, ENV_MAX_OUTPUT_TOKENS,
)


def url_error(url) -> Optional[str]:
    if not isinstance(url, str) or not url.strip():
        return "URL cannot be empty"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"URL must use http or https: {url}"
    if not parsed.netloc:
        return f"URL has no host: {url}"
    return None


def mask_api_key(api_key: Optional[str]) -> str:
    if not api_key:
        return "(not set)"
    return api_key[:API_KEY_VISIBLE_CHARS] + "..."


def _parse_bool(value, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    return default


@dataclass(frozen=True)
class ModelConfig:
    """One configured model endpoint.

    Frozen: the dialect is only ever changed by building a new copy through
    with_dialect().
    """
    name: str
    model_id: str
    url: str
    api_key: Optional[str] = None
    requires_auth: bool = True
    dialect: DialectParameters = field(default_factory=DialectParameters)
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    note: Optional[str] = None

    @property
    def masked_api_key(self) -> str:
        return mask_api_key(self.api_key)

    def with_dialect(self, dialect: DialectParameters) -> 'ModelConfig':
        return replace(self, dialect=dialect)

    def to_dict(self) -> dict:
        data = {
            "model_id": self.model_id,
            "url": self.url,
            "api_key": self.api_key,
            "requires_auth": self.requires_auth,
            **self.dialect.to_dict(),
            "max_output_tokens": self.max_output_tokens,
            "note": self.note,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, name: str, data: dict) -> tuple[Optional['ModelConfig'], list[str]]:
        """Build a model from its stored dict.

        Returns (model, warnings). Out-of-range tuning values fall back to
        their defaults; a missing or invalid model id or URL makes the entry
        unusable and the model comes back as None.
        """
        warnings = []

        model_id = data.get("model_id")
        error = model_name_error(model_id if isinstance(model_id, str) else None)
        if error:
            return None, [f"Model '{name}' skipped: {error}"]
        error = url_error(data.get("url"))
        if error:
            return None, [f"Model '{name}' skipped: {error}"]

        temperature = data.get("temperature", DEFAULT_TEMPERATURE)
        if (isinstance(temperature, bool) or not isinstance(temperature, (int, float))
                or not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE):
            warnings.append(f"Model '{name}': invalid temperature '{temperature}', using {DEFAULT_TEMPERATURE}")
            temperature = DEFAULT_TEMPERATURE

        max_output_tokens = data.get("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS)
        if (isinstance(max_output_tokens, bool) or not isinstance(max_output_tokens, int)
                or not MIN_OUTPUT_TOKENS <= max_output_tokens <= MAX_OUTPUT_TOKENS):
            warnings.append(f"Model '{name}': invalid max_output_tokens '{max_output_tokens}', "
                            f"using {DEFAULT_MAX_OUTPUT_TOKENS}")
            max_output_tokens = DEFAULT_MAX_OUTPUT_TOKENS

        dialect = DialectParameters.from_dict({
            "use_legacy_max_tokens": _parse_bool(data.get("use_legacy_max_tokens"), False),
            "temperature": temperature,
        })
        model = cls(
            name=name,
            model_id=model_id,
            url=data["url"],
            api_key=data.get("api_key") or None,
            requires_auth=_parse_bool(data.get("requires_auth"), True),
            dialect=dialect,
            max_output_tokens=max_output_tokens,
            note=data.get("note"),
        )
        return model, warnings


@dataclass
class Config:
    """User configuration with sensible defaults."""
    active_model: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: float = DEFAULT_TIMEOUT
    models: dict[str, ModelConfig] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "active_model": self.active_model,
            "max_retries": self.max_retries,
            "timeout": self.timeout,
            "models": {name: model.to_dict() for name, model in self.models.items()},
        }
        return {k: v for k, v in data.items() if v is not None}

    def validate(self) -> list[str]:
        """Validate config values and return list of warnings.

        Invalid values are replaced with defaults after warning.
        """
        warnings = []
        defaults = Config()

        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) or self.max_retries < 0:
            warnings.append(f"Invalid max_retries '{self.max_retries}', using {defaults.max_retries}")
            self.max_retries = defaults.max_retries

        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            warnings.append(f"Invalid timeout '{self.timeout}', using {defaults.timeout}")
            self.timeout = defaults.timeout

        if self.active_model is not None and self.active_model not in self.models:
            fallback = next(iter(self.models), None)
            warnings.append(f"Unknown active_model '{self.active_model}', using {fallback or 'none'}")
            self.active_model = fallback

        return warnings

    def get_model(self, name: Optional[str] = None) -> Optional[ModelConfig]:
        """Named model, else the active one, else the only one configured."""
        if name:
            return self.models.get(name)
        if self.active_model:
            return self.models.get(self.active_model)
        if len(self.models) == 1:
            return next(iter(self.models.values()))
        return None

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        raw_models = data.get("models") or {}
        models = {}
        warnings = []
        if not isinstance(raw_models, dict):
            warnings.append("Invalid models section, ignoring it")
            raw_models = {}
        for name, model_data in raw_models.items():
            if not isinstance(model_data, dict):
                warnings.append(f"Model '{name}' skipped: expected an object")
                continue
            model, model_warnings = ModelConfig.from_dict(name, model_data)
            warnings.extend(model_warnings)
            if model is not None:
                models[name] = model

        valid_keys = {"active_model", "max_retries", "timeout"}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        config = cls(models=models, **filtered)
        # Validate and print warnings to stderr
        for warning in warnings + config.validate():
            print(f"Config warning: {warning}", file=sys.stderr)
        return config


class ConfigManager:
    """Manages loading and saving configuration.

    Also the persister for detected dialects: update_dialect() rewrites the
    stored models and saves the file they came from.
    """

    CONFIG_FILENAME = ".gitgenrc"
    ENV_MODEL_NAME = "env"
    CLI_MODEL_NAME = "cli"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._config: Optional[Config] = None
        self._config_path: Optional[Path] = None
        self._environ = os.environ if environ is None else environ

    def load(self) -> Config:
        if self._config is not None:
            return self._config

        local_path = Path.cwd() / self.CONFIG_FILENAME
        if local_path.exists():
            self._config = self._load_from_file(local_path)
            self._config_path = local_path
            return self._config

        home_path = Path.home() / self.CONFIG_FILENAME
        if home_path.exists():
            self._config = self._load_from_file(home_path)
            self._config_path = home_path
            return self._config

        self._config = Config()
        return self._config

    def _load_from_file(self, path: Path) -> Config:
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            print(f"Warning: Could not load {path}: {e}", file=sys.stderr)
            return Config()
        if not isinstance(data, dict):
            print(f"Warning: Could not load {path}: expected a JSON object", file=sys.stderr)
            return Config()
        return Config.from_dict(data)

    def save(self, config: Config, global_config: bool = True) -> Path:
        path = Path.home() / self.CONFIG_FILENAME if global_config else Path.cwd() / self.CONFIG_FILENAME
        return self._write(config, path)

    def _write(self, config: Config, path: Path) -> Path:
        with open(path, 'w') as f:
            json.dump(config.to_dict(), f, indent=2)
        self._config = config
        self._config_path = path
        return path

    def get_config_path(self) -> Optional[Path]:
        return self._config_path

    def env_overrides(self) -> dict[str, str]:
        return {name: self._environ[name] for name in ENV_VARS if self._environ.get(name)}

    def env_model(self) -> Optional[ModelConfig]:
        """Model described by GITGEN_* variables, or None when URL or model are unset."""
        env = self.env_overrides()
        if ENV_BASE_URL not in env or ENV_MODEL not in env:
            return None

        data: dict = {
            "url": env[ENV_BASE_URL],
            "model_id": env[ENV_MODEL],
            "api_key": env.get(ENV_API_KEY),
            "requires_auth": _parse_bool(env.get(ENV_REQUIRES_AUTH), True),
            "use_legacy_max_tokens": _parse_bool(env.get(ENV_USE_LEGACY_MAX_TOKENS), False),
        }
        warnings = []
        if ENV_TEMPERATURE in env:
            try:
                data["temperature"] = float(env[ENV_TEMPERATURE])
            except ValueError:
                warnings.append(f"{ENV_TEMPERATURE} value {env[ENV_TEMPERATURE]} is not a number. "
                                f"Using default value {DEFAULT_TEMPERATURE}.")
        if ENV_MAX_OUTPUT_TOKENS in env:
            raw = env[ENV_MAX_OUTPUT_TOKENS]
            tokens = int(raw) if raw.strip().isdigit() else None
            if tokens is None or not MIN_OUTPUT_TOKENS <= tokens <= MAX_OUTPUT_TOKENS:
                warnings.append(f"{ENV_MAX_OUTPUT_TOKENS} value {raw} is out of range "
                                f"({MIN_OUTPUT_TOKENS}-{MAX_OUTPUT_TOKENS}). "
                                f"Using default value {DEFAULT_MAX_OUTPUT_TOKENS}.")
            else:
                data["max_output_tokens"] = tokens

        model, model_warnings = ModelConfig.from_dict(self.ENV_MODEL_NAME, data)
        for warning in warnings + model_warnings:
            print(f"Config warning: {warning}", file=sys.stderr)
        return model

    def resolve_model(
        self,
        name: Optional[str] = None,
        url: Optional[str] = None,
        model_id: Optional[str] = None,
        api_key: Optional[str] = None,
        no_auth: bool = False,
    ) -> ModelConfig:
        """Pick the model to use and apply command-line overrides.

        Precedence: CLI args > environment variables > config file
        """
        config = self.load()
        if name:
            model = config.get_model(name)
            if model is None:
                available = ", ".join(config.models) or "none configured"
                raise LLMError(f"Unknown model '{name}' (available: {available})")
        else:
            model = self.env_model() or config.get_model()

        if model is None:
            if not (url and model_id):
                raise LLMError(
                    "No model configured.\n\n"
                    f"Add one to ~/{self.CONFIG_FILENAME}, set {ENV_BASE_URL} and {ENV_MODEL}, "
                    "or pass --url and --model-id."
                )
            model = ModelConfig(name=self.CLI_MODEL_NAME, model_id=model_id, url=url)

        overrides = {}
        if url:
            overrides["url"] = url
        if model_id:
            overrides["model_id"] = model_id
        if api_key:
            overrides["api_key"] = api_key
        if no_auth:
            overrides["requires_auth"] = False
        if overrides:
            model = replace(model, **overrides)

        error = model_name_error(model.model_id) or url_error(model.url)
        if error:
            raise LLMError(f"Invalid model configuration: {error}")
        return model

    def update_dialect(self, model_id: str, dialect: DialectParameters) -> None:
        """Store a freshly detected dialect for every configured model using model_id.

        Only the dialect keys of the matching entries change on disk; skipped
        models and unknown keys in the file are left as they are.
        """
        config = self.load()
        matched = [name for name, model in config.models.items() if model.model_id == model_id]
        if not matched:
            logger.debug(f"No stored model uses {model_id}; detected parameters not saved")
            return

        path = self._config_path or Path.home() / self.CONFIG_FILENAME
        data = self._read_raw(path)
        stored = data.setdefault("models", {})
        for name in matched:
            config.models[name] = config.models[name].with_dialect(dialect)
            entry = stored.get(name)
            if isinstance(entry, dict):
                entry.update(dialect.to_dict())
            else:
                stored[name] = config.models[name].to_dict()

        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        self._config = config
        self._config_path = path
        logger.info(f"Saved detected parameters for {model_id} to {path}")

    @staticmethod
    def _read_raw(path: Path) -> dict:
        if not path.exists():
            return {}
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get("models", {}), dict):
            raise ValueError(f"{path} no longer holds a models object; not overwriting it")
        return data


_manager = ConfigManager()


def get_manager() -> ConfigManager:
    return _manager


__all__ = [
    "Config",
    "ConfigManager",
    "ModelConfig",
    "get_manager",
    "mask_api_key",
    "url_error",
    "ENV_VARS",
]
