"""
Manifest loading and reference handling.

A manifest declares data source lookups and managed resources. Config
values may reference attributes of other entries with
``${<type>.<name>.<attribute>}`` or ``${data.<type>.<name>.<attribute>}``.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set, Tuple

import yaml

from errors import ManifestError
from plugins.base import UNKNOWN, DataSourceSpec, ResourceSpec, is_unknown

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")
NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


@dataclass
class Manifest:
    """Parsed manifest."""

    data: List[DataSourceSpec] = field(default_factory=list)
    resources: List[ResourceSpec] = field(default_factory=list)

    def resource(self, address: str) -> ResourceSpec:
        for spec in self.resources:
            if spec.address == address:
                return spec
        raise KeyError(address)


def split_reference(reference: str) -> Tuple[str, str]:
    """
    Split a reference into (address, attribute).

    Raises:
        ManifestError: If the reference has no attribute part.
    """
    parts = reference.strip().split(".")
    size = 3 if parts[0] == "data" else 2
    if len(parts) <= size or not all(parts):
        raise ManifestError(f"Invalid reference: ${{{reference}}}")
    return ".".join(parts[:size]), ".".join(parts[size:])


def find_attribute_references(value: Any) -> Set[Tuple[str, str]]:
    """(address, attribute) pairs referenced anywhere inside ``value``."""
    found: Set[Tuple[str, str]] = set()
    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            found.add(split_reference(match.group(1)))
    elif isinstance(value, dict):
        for item in value.values():
            found |= find_attribute_references(item)
    elif isinstance(value, list):
        for item in value:
            found |= find_attribute_references(item)
    return found


def find_references(value: Any) -> Set[str]:
    """Addresses referenced anywhere inside ``value``."""
    return {address for address, _ in find_attribute_references(value)}


def has_references(value: Any) -> bool:
    if isinstance(value, str):
        return REFERENCE_PATTERN.search(value) is not None
    if isinstance(value, dict):
        return any(has_references(v) for v in value.values())
    if isinstance(value, list):
        return any(has_references(v) for v in value)
    return False


def resolve_references(value: Any, lookup: Callable[[str, str], Any]) -> Any:
    """
    Replace references in ``value`` using ``lookup(address, attribute)``.

    A string that is exactly one reference takes the referenced value as
    is. Embedded references are substituted as text; if any of them is
    unknown, the whole string is unknown.
    """
    if isinstance(value, dict):
        return {k: resolve_references(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_references(v, lookup) for v in value]
    if not isinstance(value, str):
        return value

    whole = REFERENCE_PATTERN.fullmatch(value)
    if whole:
        return lookup(*split_reference(whole.group(1)))

    unknown = False

    def substitute(match: "re.Match[str]") -> str:
        nonlocal unknown
        resolved = lookup(*split_reference(match.group(1)))
        if is_unknown(resolved):
            unknown = True
            return ""
        if resolved is None:
            return ""
        return resolved if isinstance(resolved, str) else json.dumps(resolved)

    result = REFERENCE_PATTERN.sub(substitute, value)
    return UNKNOWN if unknown else result


def _parse_entry(entry: Any, section: str, index: int) -> Tuple[str, str, Dict[str, Any]]:
    where = f"{section}[{index}]"
    if not isinstance(entry, dict):
        raise ManifestError(f"{where}: expected a mapping")

    type_name = entry.get("type")
    name = entry.get("name")
    config = entry.get("config", {})

    if not isinstance(type_name, str) or not type_name:
        raise ManifestError(f"{where}: 'type' is required")
    if not isinstance(name, str) or not NAME_PATTERN.match(name):
        raise ManifestError(f"{where}: 'name' must match {NAME_PATTERN.pattern}")
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ManifestError(f"{where}: 'config' must be a mapping")

    unexpected = set(entry) - {"type", "name", "config"}
    if unexpected:
        raise ManifestError(f"{where}: unexpected keys {sorted(unexpected)}")
    return type_name, name, config


def parse_manifest(document: Any) -> Manifest:
    """
    Build a Manifest from a parsed YAML/JSON document.

    Raises:
        ManifestError: On malformed entries, duplicate addresses, references
            to undeclared addresses, or dependency cycles.
    """
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ManifestError("Manifest must be a mapping with 'data' and 'resources'")

    unexpected = set(document) - {"data", "resources"}
    if unexpected:
        raise ManifestError(f"Unexpected top-level keys: {sorted(unexpected)}")

    manifest = Manifest()
    seen: Set[str] = set()

    for index, entry in enumerate(document.get("data") or []):
        type_name, name, config = _parse_entry(entry, "data", index)
        spec = DataSourceSpec(type=type_name, name=name, config=config)
        if spec.address in seen:
            raise ManifestError(f"Duplicate address: {spec.address}")
        seen.add(spec.address)
        manifest.data.append(spec)

    for index, entry in enumerate(document.get("resources") or []):
        type_name, name, config = _parse_entry(entry, "resources", index)
        spec = ResourceSpec(type=type_name, name=name, config=config)
        if spec.address in seen:
            raise ManifestError(f"Duplicate address: {spec.address}")
        seen.add(spec.address)
        manifest.resources.append(spec)

    for data_spec in manifest.data:
        for address in find_references(data_spec.config):
            if address not in seen:
                raise ManifestError(
                    f"{data_spec.address}: reference to undeclared {address}"
                )
            if not address.startswith("data."):
                raise ManifestError(
                    f"{data_spec.address}: data sources may only reference "
                    f"other data sources, not {address}"
                )

    for spec in manifest.resources:
        references = find_references(spec.config)
        for address in sorted(references):
            if address not in seen:
                raise ManifestError(f"{spec.address}: reference to undeclared {address}")
            if address == spec.address:
                raise ManifestError(f"{spec.address}: references itself")
        spec.dependencies = sorted(references)

    manifest.data = dependency_order(
        manifest.data, lambda s: sorted(find_references(s.config))
    )
    manifest.resources = dependency_order(
        manifest.resources, lambda s: s.dependencies
    )
    return manifest


def load_manifest(path: str) -> Manifest:
    """Read and parse a YAML or JSON manifest file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ManifestError(f"Failed to read manifest {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(f"Failed to parse manifest {path}: {e}") from e

    manifest = parse_manifest(document)
    logger.debug(
        f"Loaded manifest {path}: {len(manifest.data)} data sources, "
        f"{len(manifest.resources)} resources"
    )
    return manifest


def dependency_order(specs: List[Any], dependencies_of: Callable[[Any], List[str]]) -> List[Any]:
    """
    Order specs so every spec follows the specs it depends on.

    Declaration order is kept among independent specs. Dependencies on
    addresses outside ``specs`` are ignored.

    Raises:
        ManifestError: If the dependencies form a cycle.
    """
    by_address = {spec.address: spec for spec in specs}
    ordered: List[Any] = []
    state: Dict[str, str] = {}

    def visit(spec: Any, path: List[str]) -> None:
        mark = state.get(spec.address)
        if mark == "done":
            return
        if mark == "visiting":
            cycle = path[path.index(spec.address):] + [spec.address]
            raise ManifestError(f"Dependency cycle: {' -> '.join(cycle)}")

        state[spec.address] = "visiting"
        for address in dependencies_of(spec):
            if address in by_address:
                visit(by_address[address], path + [spec.address])
        state[spec.address] = "done"
        ordered.append(spec)

    for spec in specs:
        visit(spec, [])
    return ordered
