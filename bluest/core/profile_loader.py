"""Profile loading and validation for YAML-based sensor profiles."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluest.core.errors import ArgumentError, ProfileLoadError, ProfileValidationError
from bluest.core.features import feature_by_name
from bluest.core.model import AggregateLayout, ProfileMatch, SensorProfile, TransportSettings
from bluest.core.registers import WESU_REGISTER_MAP

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, SensorProfile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("bluest.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "bluest/profiles", xdg_data / "bluest/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _feature(name: str, *, context: str) -> int:
    try:
        return int(feature_by_name(name))
    except ArgumentError as exc:
        raise ProfileValidationError(f"{context}: {exc}") from exc


def _build_aggregate(names: list[str], *, context: str) -> AggregateLayout:
    features = tuple(_feature(name, context=context) for name in names)
    if len(set(features)) != len(features):
        raise ProfileValidationError(f"{context} repeats a feature")
    return AggregateLayout(features=features)


def _build_register_values(values: dict[str, int], *, context: str) -> dict[str, int]:
    descriptors = {descriptor.name: descriptor for descriptor in WESU_REGISTER_MAP}
    for name in values:
        descriptor = descriptors.get(name)
        if descriptor is None:
            known = ", ".join(sorted(descriptors))
            raise ProfileValidationError(f"{context}.{name} is not a known register. Known: {known}")
        if not descriptor.writable:
            raise ProfileValidationError(f"{context}.{name} is read-only")
    return dict(values)


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> SensorProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    profile_id = doc["id"]
    aggregates = tuple(
        _build_aggregate(names, context=f"{profile_id}.aggregates[{i}]")
        for i, names in enumerate(doc.get("aggregates", []))
    )

    notifications = 0
    for name in doc.get("notifications", []):
        notifications |= _feature(name, context=f"{profile_id}.notifications")

    registers = doc.get("registers", {})
    transport = doc.get("transport", {})

    return SensorProfile(
        id=profile_id,
        name=doc["name"],
        match=ProfileMatch(
            device_ids=tuple(doc["match"].get("device_ids", [])),
            name_contains=tuple(doc["match"].get("name_contains", [])),
        ),
        aggregates=aggregates,
        notifications=notifications,
        register_persistence=registers.get("persistence", "persistent"),
        register_values=_build_register_values(
            registers.get("values", {}), context=f"{profile_id}.registers.values"
        ),
        transport=TransportSettings(
            connect_timeout_s=float(transport.get("connect_timeout_s", 10.0)),
            poll_interval_s=float(transport.get("poll_interval_s", 0.0)),
            register_timeout_s=float(transport.get("register_timeout_s", 10.0)),
        ),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("bluest.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, SensorProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
