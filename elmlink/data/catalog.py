"""Payload catalog loading and validation for YAML-based payload definitions."""

from __future__ import annotations

import functools
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

from elmlink.core.errors import PayloadLoadError, PayloadNotFoundError, PayloadValidationError
from elmlink.core.model import PayloadSpec
from elmlink.data.base import AsciiData, BitmaskData, EnumData, LinearData, ObdData

_HEX_RE = re.compile(r"^[0-9a-f]+$")
LOGGER = logging.getLogger(__name__)

_KIND_BASES: dict[str, type[ObdData]] = {
    "linear": LinearData,
    "enum": EnumData,
    "ascii": AsciiData,
    "bitmask": BitmaskData,
}


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

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
            raise PayloadValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class PayloadCatalog:
    specs: dict[str, PayloadSpec]
    types: dict[str, type[ObdData]]
    warnings: tuple[str, ...]

    def get(self, payload_id: str) -> type[ObdData]:
        payload_type = self.types.get(payload_id)
        if payload_type is None:
            available = ", ".join(sorted(self.types))
            raise PayloadNotFoundError(f"Unknown payload '{payload_id}'. Available: {available}")
        return payload_type

    def list_specs(self) -> list[PayloadSpec]:
        return sorted(self.specs.values(), key=lambda s: ((s.mode or 0), s.pid, s.id))


def _load_schema_validator() -> Any:
    schema_text = resources.files("elmlink.schemas").joinpath("payload.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _payload_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "elmlink/payloads", xdg_data / "elmlink/payloads"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PayloadLoadError(f"Could not read payload file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise PayloadValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise PayloadValidationError(f"Payload file {path} must contain a mapping at root")
    return loaded


def _parse_hex_byte_string(value: str, *, context: str) -> int:
    normalized = value.strip().lower()
    if not normalized or not _HEX_RE.match(normalized):
        raise PayloadValidationError(f"{context} must contain only [0-9a-f]")
    return int(normalized, 16)


def _class_name(payload_id: str) -> str:
    return "".join(part.capitalize() for part in payload_id.split("_"))


def _build_specs(doc: dict[str, Any], source: Path | Traversable) -> list[PayloadSpec]:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise PayloadValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    doc_mode = doc.get("mode")
    specs: list[PayloadSpec] = []
    for payload_id, entry in doc["payloads"].items():
        context = f"{doc['id']}.{payload_id}"
        kind = entry["kind"]
        mode_text = entry.get("mode", doc_mode)
        values: dict[int, str] | None = None
        if kind == "enum":
            if "values" not in entry:
                raise PayloadValidationError(f"{context} is an enum without values")
            values = {
                _parse_hex_byte_string(code, context=f"{context}.values"): label
                for code, label in entry["values"].items()
            }
        specs.append(
            PayloadSpec(
                id=payload_id,
                name=entry["name"],
                kind=kind,
                pid=_parse_hex_byte_string(entry["pid"], context=f"{context}.pid"),
                mode=_parse_hex_byte_string(mode_text, context=f"{context}.mode") if mode_text else None,
                description=entry.get("description", ""),
                unit=entry.get("unit"),
                byte_count=int(entry.get("bytes", 1)),
                scale=float(entry.get("scale", 1.0)),
                offset=float(entry.get("offset", 0.0)),
                values=values,
            )
        )
    return specs


def build_payload_type(spec: PayloadSpec) -> type[ObdData]:
    """Create the ``ObdData`` subclass described by ``spec``."""
    base = _KIND_BASES.get(spec.kind)
    if base is None:
        raise PayloadValidationError(f"Unsupported payload kind '{spec.kind}' for '{spec.id}'")

    namespace: dict[str, Any] = {
        "PID": spec.pid,
        "MODE": spec.mode,
        "NAME": spec.name,
        "DESCRIPTION": spec.description,
        "UNIT": spec.unit,
        "__module__": __name__,
        "__doc__": spec.description or spec.name,
    }
    if spec.kind == "linear":
        namespace.update(BYTES=spec.byte_count, SCALE=spec.scale, OFFSET=spec.offset)
    elif spec.kind == "enum":
        namespace["VALUES"] = dict(spec.values or {})
    return type(_class_name(spec.id), (base,), namespace)


def _iter_packaged_payload_paths() -> list[Traversable]:
    payload_root = resources.files("elmlink.payloads")
    return [item for item in payload_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_payload_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _payload_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


@functools.cache
def load_payloads() -> PayloadCatalog:
    """Load packaged and user payloads once per process.

    Repeated calls return the same catalog so generated types stay identical
    across callers. Use ``load_payloads.cache_clear()`` to re-read the files.
    """
    specs: dict[str, PayloadSpec] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_payload_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        for spec in _build_specs(doc, path):
            specs[spec.id] = spec

    for path in _iter_user_payload_paths():
        doc = _read_yaml(path)
        for spec in _build_specs(doc, path):
            if spec.id in specs:
                warning = f"User payload '{spec.id}' overrides packaged payload"
                LOGGER.warning(warning)
                warnings.append(warning)
            specs[spec.id] = spec

    types = {payload_id: build_payload_type(spec) for payload_id, spec in specs.items()}
    return PayloadCatalog(specs=specs, types=types, warnings=tuple(warnings))
