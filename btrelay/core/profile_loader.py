"""Relay profile loading and validation for YAML-based btrelay profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from btrelay.core.errors import ProfileLoadError, ProfileValidationError
from btrelay.core.model import GattSpec, LinkSettings, RelayProfile, ScanFilter

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
DEFAULT_PROFILE_ID = "nus_relay"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# Booleans stay strings here; _normalize_bool decides what counts as true/false.
for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


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
    profiles: dict[str, RelayProfile]
    warnings: tuple[str, ...]

    def get(self, profile_id: str | None = None) -> RelayProfile:
        wanted = profile_id or DEFAULT_PROFILE_ID
        profile = self.profiles.get(wanted)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "<none>"
            raise ProfileLoadError(f"Unknown relay profile '{wanted}'. Available: {available}")
        return profile


def _load_schema_validator() -> Any:
    schema_text = resources.files("btrelay.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "btrelay/profiles", xdg_data / "btrelay/profiles"


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


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_link(doc: dict[str, Any], source: Path | Traversable) -> LinkSettings:
    defaults = LinkSettings()
    link_doc = doc.get("link", {})
    link = LinkSettings(
        queue_max=int(link_doc.get("queue_max", defaults.queue_max)),
        backoff_floor_ms=int(link_doc.get("backoff_floor_ms", defaults.backoff_floor_ms)),
        backoff_ceiling_ms=int(link_doc.get("backoff_ceiling_ms", defaults.backoff_ceiling_ms)),
        backoff_factor=int(link_doc.get("backoff_factor", defaults.backoff_factor)),
        poll_interval_ms=int(link_doc.get("poll_interval_ms", defaults.poll_interval_ms)),
    )
    if link.backoff_ceiling_ms < link.backoff_floor_ms:
        raise ProfileValidationError(
            f"{doc['id']}.link.backoff_ceiling_ms must not be below backoff_floor_ms in {source}"
        )
    return link


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> RelayProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    transport = doc["transport"]
    gatt = GattSpec(
        service_uuid=_normalize_uuid(
            transport["service_uuid"],
            context=f"{doc['id']}.transport.service_uuid",
        ),
        write_char_uuid=_normalize_uuid(
            transport["write_char_uuid"],
            context=f"{doc['id']}.transport.write_char_uuid",
        ),
        notify_char_uuid=_normalize_uuid(
            transport["notify_char_uuid"],
            context=f"{doc['id']}.transport.notify_char_uuid",
        ),
        write_with_response=_normalize_bool(
            transport.get("write_with_response", True),
            context=f"{doc['id']}.transport.write_with_response",
        ),
    )

    return RelayProfile(
        id=doc["id"],
        name=doc["name"],
        scan=ScanFilter(
            name_prefixes=tuple(p.strip() for p in doc["scan"]["name_prefixes"]),
            service_uuid=gatt.service_uuid,
            timeout_s=float(doc["scan"].get("timeout_s", 10.0)),
        ),
        gatt=gatt,
        link=_build_link(doc, source),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("btrelay.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, RelayProfile] = {}
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
