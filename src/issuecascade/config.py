from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import InvalidFieldValue, InvalidRepoFormat

CONFIG_FILENAME = ".issuecascade.yml"
CONFIG_FILENAME_JSON = ".issuecascade.json"
FRAMEWORK_CONFIG_FILENAME = "framework-config.json"
DEFAULT_DEPTH = 10


class ConfigError(RuntimeError):
    pass


@dataclass
class FieldAliases:
    field: str
    values: dict[str, str] = field(default_factory=dict)


@dataclass
class CascadeConfig:
    project_owner: str
    project_number: int
    repositories: list[str] = field(default_factory=list)
    framework: str = ""
    fields: dict[str, FieldAliases] = field(default_factory=dict)
    default_depth: int = DEFAULT_DEPTH
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "WARNING"
    source_file: Path | None = None

    def validate(self) -> None:
        if not self.project_owner:
            raise ConfigError("project.owner is required")
        if not self.project_number:
            raise ConfigError("project.number is required")
        if not self.repositories:
            raise ConfigError("at least one repository is required")

    def default_repository(self) -> tuple[str, str] | None:
        if not self.repositories:
            return None
        try:
            return parse_repo(self.repositories[0])
        except InvalidRepoFormat:
            return None

    def is_workflow_framework(self) -> bool:
        return self.framework.upper().startswith("IDPF")

    def get_field_name(self, key: str, default: str | None = None) -> str:
        aliases = self.fields.get(key)
        if aliases and aliases.field:
            return aliases.field
        return default or key

    def resolve_field_value(self, key: str, alias: str) -> str:
        """Map a configured alias to the project's option name (pass-through otherwise)."""
        aliases = self.fields.get(key)
        if not aliases:
            return alias
        if alias in aliases.values:
            return aliases.values[alias]
        folded = alias.casefold()
        for name, value in aliases.values.items():
            if name.casefold() == folded:
                return value
        return alias

    def validate_field_value(self, key: str, alias: str) -> None:
        aliases = self.fields.get(key)
        if not aliases or not aliases.values:
            return
        folded = alias.casefold()
        if any(name.casefold() == folded for name in aliases.values):
            return
        raise InvalidFieldValue(key, alias, aliases.values.keys())

    def apply_env_overrides(self) -> None:
        owner = os.environ.get("ISSUECASCADE_PROJECT_OWNER")
        if owner:
            self.project_owner = owner
        number = os.environ.get("ISSUECASCADE_PROJECT_NUMBER")
        if number:
            try:
                self.project_number = int(number)
            except ValueError:
                pass


def parse_repo(value: str) -> tuple[str, str]:
    parts = value.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRepoFormat(value)
    return parts[0], parts[1]


def find_config_file(start: str | Path) -> Path:
    """Walk up from ``start`` looking for the YAML config, then the JSON companion."""
    base = Path(start).resolve()
    for name in (CONFIG_FILENAME, CONFIG_FILENAME_JSON):
        for directory in (base, *base.parents):
            candidate = directory / name
            if candidate.is_file():
                return candidate
    raise ConfigError(f"no {CONFIG_FILENAME} found in {start} or any parent directory")


def detect_framework(directory: Path) -> str:
    path = directory / FRAMEWORK_CONFIG_FILENAME
    if not path.is_file():
        return ""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return ""
    project_type = raw.get("projectType") if isinstance(raw, dict) else None
    if isinstance(project_type, dict):
        value = project_type.get("processFramework")
        if isinstance(value, str):
            return value
    return ""


def _parse_fields(raw: Any) -> dict[str, FieldAliases]:
    out: dict[str, FieldAliases] = {}
    if not isinstance(raw, dict):
        return out
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        values = entry.get("values") or {}
        out[str(key)] = FieldAliases(
            field=str(entry.get("field") or key),
            values={str(k): str(v) for k, v in values.items()} if isinstance(values, dict) else {},
        )
    return out


def load_config(path: str | Path) -> CascadeConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix == ".json":
            loaded = json.loads(text or "{}")
        else:
            loaded = yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to parse configuration {p}: {exc}") from exc
    raw = cast(dict[str, Any], loaded or {})
    project = cast(dict[str, Any], raw.get("project", {}) or {})
    logging_config = cast(dict[str, Any], raw.get("logging", {}) or {})
    behavior = cast(dict[str, Any], raw.get("behavior", {}) or {})

    try:
        number = int(project.get("number") or 0)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"project.number must be an integer: {project.get('number')!r}") from exc

    framework = str(raw.get("framework") or "") or detect_framework(p.parent)

    return CascadeConfig(
        project_owner=str(project.get("owner") or ""),
        project_number=number,
        repositories=[str(r) for r in raw.get("repositories", []) or []],
        framework=framework,
        fields=_parse_fields(raw.get("fields")),
        default_depth=int(behavior.get("default_depth", DEFAULT_DEPTH)),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=str(logging_config.get("level", "WARNING")),
        source_file=p,
    )


def load_from_directory(directory: str | Path) -> CascadeConfig:
    return load_config(find_config_file(directory))


__all__ = [
    "CascadeConfig",
    "ConfigError",
    "FieldAliases",
    "detect_framework",
    "find_config_file",
    "load_config",
    "load_from_directory",
    "parse_repo",
]
