from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake

from distributor.config import CONFIG_FILE_PATTERN, DEFAULT_EXCLUDES, ENV_PREFIX, ModuleType
from distributor.exceptions import ConfigurationError
from distributor.logging import logger

ENV_FILE = find_dotenv(usecwd=True)

_LIST_KEYS = frozenset({"exclude", "ignore", "order"})
# flat keys that belong to the nested module_config
_MODULE_KEYS = frozenset({"module_name", "module_type"})


class ModuleConfig(BaseModel):
    """Module shell configuration."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    module_name: str = Field(default="", description="Name bound by the module shell.")
    module_type: ModuleType = Field(default=ModuleType.NONE, description="Module shell kind.")

    @model_validator(mode="after")
    def _require_name(self) -> ModuleConfig:
        if self.module_type is not ModuleType.NONE and not self.module_name:
            msg = f"module name is required for module type {self.module_type.value!r}"
            raise ValueError(msg)
        return self


class BundleConfig(BaseModel):
    """Immutable snapshot of the options consumed by one bundling run."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    source: Path = Field(default=Path("src"), description="Source directory.")
    output_dir: Path = Field(default=Path("dist"), alias="output", description="Output directory.")
    name: str = Field(default="dist.js", description="Output file name.")

    exclude: list[str] = Field(default_factory=list, description="Exclude patterns (regex).")
    ignore: list[str] = Field(default_factory=list, description="Ignore patterns (regex).")
    order: list[str] = Field(default_factory=list, description="Preferred entry order.")
    separator: str = Field(default="", description="Text written before the newline after each file.")

    module_config: ModuleConfig = Field(default_factory=ModuleConfig, description="Module shell.")

    ts_config: Path | None = Field(default=None, description="tsconfig.json to use.")
    ts_installed: bool = Field(default=True, description="Allow TypeScript transpilation.")

    start: bool = Field(default=True, description="Bundle at launch.")
    watch: bool = Field(default=False, description="Re-bundle on source changes.")
    poll_interval: float = Field(default=0.5, gt=0, description="Watch polling interval in seconds.")

    @computed_field
    @property
    def output(self) -> Path:
        """Resolved path of the output file."""
        return (self.output_dir / self.name).resolve()

    @field_validator("exclude", "ignore", "order", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("exclude", "ignore")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                msg = f"invalid pattern {pattern!r}: {e}"
                raise ValueError(msg) from e
        return value


def build_config(*sources: dict[str, Any]) -> BundleConfig:
    """Merge option mappings and validate them into a BundleConfig.

    Later mappings win over earlier ones, so callers pass them from the
    weakest source (environment) to the strongest (command line).

    Args:
        *sources (dict[str, Any]): option mappings, keyed in snake_case or camelCase.

    Raises:
        ConfigurationError: if the merged options do not validate.

    Returns:
        BundleConfig: the validated configuration.
    """
    merged: dict[str, Any] = {}
    for source in sources:
        for key, value in source.items():
            field = _field_key(key)
            if field == "module_config" and isinstance(value, dict):
                nested = {to_snake(k): v for k, v in value.items()}
                merged[field] = {**merged.get(field, {}), **nested}
            elif field in _MODULE_KEYS:
                merged["module_config"] = {**merged.get("module_config", {}), field: value}
            else:
                merged[field] = value
    try:
        return BundleConfig.model_validate(merged)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(message=f"Invalid configuration: {errors}") from e


def _field_key(key: str) -> str:
    """Map an alias or field name to the key BundleConfig validates."""
    field = to_snake(key)
    if field == "output_dir":
        return "output"
    return field


def load_env_defaults(env_file: str | None = None) -> dict[str, Any]:
    """Collect ``DISTRIBUTOR_*`` options from a .env file and the environment.

    The process environment wins over the .env file. List options
    (exclude, ignore, order) are comma separated.

    Args:
        env_file (str | None): .env file to read; defaults to the one found from the CWD.

    Returns:
        dict[str, Any]: option mapping keyed by field name.
    """
    path = ENV_FILE if env_file is None else env_file
    values: dict[str, str | None] = dict(dotenv_values(path)) if path else {}
    values.update(os.environ)

    out: dict[str, Any] = {}
    for key, value in values.items():
        if not key.startswith(ENV_PREFIX) or value is None:
            continue
        name = key.removeprefix(ENV_PREFIX).lower()
        if name in {"log_file", "log_level"}:
            continue
        if name in _LIST_KEYS:
            out[name] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            out[name] = value
    return out


def env_log_options(env_file: str | None = None) -> tuple[str | None, str | None]:
    """Return the (log file, log level) pair configured through the environment."""
    path = ENV_FILE if env_file is None else env_file
    values: dict[str, str | None] = dict(dotenv_values(path)) if path else {}
    values.update(os.environ)
    return values.get(f"{ENV_PREFIX}LOG_FILE"), values.get(f"{ENV_PREFIX}LOG_LEVEL")


def find_config_file(start: Path) -> Path | None:
    """Search ``start`` and its subdirectories for a distrc config file.

    Tooling directories in DEFAULT_EXCLUDES are pruned. When several
    candidates exist the one closest to ``start`` wins, ties broken by path.

    Args:
        start (Path): directory to search from, usually the CWD.

    Returns:
        Path | None: the config file, or None if there is none.
    """
    logger.info("Searching for config file in %s", start)
    config_re = re.compile(CONFIG_FILE_PATTERN)
    found: list[Path] = []
    for root, dirs, files in os.walk(start):
        dirs[:] = sorted(d for d in dirs if d not in DEFAULT_EXCLUDES)
        found.extend(Path(root) / f for f in files if config_re.match(f))
    if not found:
        logger.info("No config file found, skipping")
        return None
    best = min(found, key=lambda p: (len(p.relative_to(start).parts), str(p)))
    logger.info("Found config file in %s", best)
    return best


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a config file into an option mapping.

    Documents are read with ``yaml.safe_load``, which also accepts JSON.

    Args:
        path (Path): config file to read.

    Raises:
        ConfigurationError: if the file cannot be read or is not a mapping.

    Returns:
        dict[str, Any]: the parsed options (empty for an empty document).
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(message=f"Cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(message=f"Config file {path} must contain a mapping")
    return data
