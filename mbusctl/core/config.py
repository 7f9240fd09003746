"""Configuration loading and validation for mbusctl."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from mbusctl.core.errors import ConfigError
from mbusctl.core.model import BusSettings, Config, SerialSettings

LOGGER = logging.getLogger(__name__)

RECOMMENDED_BAUDRATES = (300, 2400, 9600)
MIN_BAUDRATE = 300


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("mbusctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "mbusctl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: str) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def check_baudrate(baudrate: int) -> tuple[str, ...]:
    """Reject unusable rates, returning advisory warnings for unusual ones."""
    if baudrate < MIN_BAUDRATE:
        raise ConfigError(
            f"Too low baudrate {baudrate}, recommended: {', '.join(map(str, RECOMMENDED_BAUDRATES))}."
        )
    if baudrate not in RECOMMENDED_BAUDRATES:
        warning = f"Baudrate {baudrate} is not recommended by the M-Bus standard."
        LOGGER.info(warning)
        return (warning,)
    return ()


@dataclass(frozen=True)
class LoadedConfig:
    config: Config
    warnings: tuple[str, ...]


def load_config(
    path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> LoadedConfig:
    """Build the effective configuration: defaults, then the file, then overrides.

    A missing file at the default location is not an error; a missing file
    given explicitly is. Overrides with a None value are ignored.
    """
    doc: dict[str, Any] = {}
    source = path if path is not None else default_config_path()
    if path is not None or source.is_file():
        doc = _read_yaml(source)
        _validate(doc, str(source))

    merged = dict(doc)
    merged.update({key: value for key, value in (overrides or {}).items() if value is not None})

    warnings: tuple[str, ...] = ()
    if "baudrate" in merged:
        warnings = check_baudrate(merged["baudrate"])
    _validate(merged, "effective configuration")

    if "device" not in merged:
        raise ConfigError("No serial device configured. Pass --device or set 'device' in the config file.")

    serial_settings = SerialSettings(
        device=merged["device"],
        baudrate=merged.get("baudrate", SerialSettings.baudrate),
        parity=merged.get("parity", SerialSettings.parity),
        timeout_s=float(merged["timeout_s"]) if "timeout_s" in merged else None,
    )
    bus_settings = BusSettings(
        max_search_retry=merged.get("max_search_retry", BusSettings.max_search_retry),
        commit_attempts=merged.get("commit_attempts", BusSettings.commit_attempts),
        registry_capacity=merged.get("registry_capacity", BusSettings.registry_capacity),
    )
    return LoadedConfig(config=Config(serial=serial_settings, bus=bus_settings), warnings=warnings)
