"""Node.js package.json and package-lock.json parsing."""

import json
import re

from .detect import identify
from .errors import MalformedInputError
from .models import LockEntry, Lockfile, Manifest, ManifestEntry
from .ranges import is_registry_spec

_DEPENDENCY_SECTIONS = (
    ("dependencies", "prod"),
    ("optionalDependencies", "optional"),
    ("devDependencies", "dev"),
)


class PackageJsonParser:
    """Parser for package.json manifests."""

    def __init__(self, include_dev: bool = True, source: str = "package.json"):
        self.include_dev = include_dev
        self.source = source
        # Specifier prefixes that are not registry ranges
        self.source_patterns = [
            (r"^(git\+|git://|github:|gitlab:|bitbucket:)", "vcs"),
            (r"^(file:|link:|workspace:|\.{1,2}/|/)", "path"),
            (r"^https?://", "url"),
            (r"^npm:", "alias"),
            (r"^[\w.-]+/[\w.-]+(#.*)?$", "vcs"),  # user/repo shorthand
        ]

    def _classify(self, spec: str) -> str:
        stripped = spec.strip()
        for pattern, source_type in self.source_patterns:
            if re.match(pattern, stripped):
                return source_type
        return "registry" if is_registry_spec(stripped) else "tag"

    def _parse_section(self, data: dict, section: str, dependency_type: str) -> list[ManifestEntry]:
        declared = data.get(section) or {}
        if not isinstance(declared, dict):
            raise MalformedInputError(f"'{section}' must be an object", self.source)

        entries = []
        for name, spec in declared.items():
            if not isinstance(spec, str):
                raise MalformedInputError(
                    f"'{section}.{name}' must be a version string, got {type(spec).__name__}", self.source
                )
            entries.append(
                ManifestEntry(
                    name=name,
                    spec=spec,
                    dependency_type=dependency_type,
                    source_type=self._classify(spec),
                )
            )
        return entries

    def parse(self, content: str) -> Manifest:
        """Parse package.json content into Manifest."""
        data = _load_json(content, self.source)

        entries: list[ManifestEntry] = []
        seen: set[str] = set()
        for section, dependency_type in _DEPENDENCY_SECTIONS:
            if dependency_type == "dev" and not self.include_dev:
                continue
            for entry in self._parse_section(data, section, dependency_type):
                # npm lets a dependency appear in several sections; first one wins
                if entry.name not in seen:
                    seen.add(entry.name)
                    entries.append(entry)

        return Manifest(
            ecosystem="node",
            raw=content,
            entries=entries,
            name=str(data.get("name") or "root"),
            version=str(data.get("version") or "0.0.0"),
        )


def parse_package_json(content: str, include_dev: bool = True, source: str = "package.json") -> Manifest:
    """Parse package.json content into Manifest.

    Args:
        content: The package.json file content
        include_dev: Whether devDependencies are part of the graph
        source: Name used in error messages

    Returns:
        Parsed Manifest object
    """
    parser = PackageJsonParser(include_dev=include_dev, source=source)
    return parser.parse(content)


def parse_lockfile(content: str, source: str = "package-lock.json") -> Lockfile:
    """Parse package-lock.json / npm-shrinkwrap.json content.

    Version 2 and 3 lockfiles are read from their ``packages`` map; version 1
    lockfiles have their nested ``dependencies`` tree flattened into the same
    ``node_modules/...`` location keys.

    Raises:
        MalformedInputError: if the content is not a supported lockfile
    """
    data = _load_json(content, source)
    lock_format = identify(content)

    if lock_format in ("npm-v2", "npm-v3") and isinstance(data.get("packages"), dict):
        entries = _entries_from_packages(data["packages"], source)
    elif lock_format == "npm-v1" or (lock_format == "npm-v2" and "packages" not in data):
        entries = {"": LockEntry(location="", name=str(data.get("name") or "root"), version=data.get("version"))}
        _flatten_v1(data.get("dependencies") or {}, "", entries, source)
        lock_format = "npm-v1"
    else:
        raise MalformedInputError("unsupported lockfile format", source)

    return Lockfile(format=lock_format, raw=content, entries=entries, source=source)


def location_name(location: str) -> str:
    """Package name installed at a node_modules location."""
    if "node_modules/" in location:
        return location.rsplit("node_modules/", 1)[1]
    return location.rsplit("/", 1)[-1]


def parent_location(location: str) -> str | None:
    """Location of the node_modules directory owner enclosing ``location``."""
    if location == "":
        return None
    if "/node_modules/" in location:
        return location.rsplit("/node_modules/", 1)[0]
    return ""


def _load_json(content: str, source: str) -> dict:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedInputError(f"invalid JSON: {e.msg} at line {e.lineno} column {e.colno}", source) from e
    if not isinstance(data, dict):
        raise MalformedInputError("top-level value must be an object", source)
    return data


def _string_map(data: dict, key: str, source: str, location: str) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise MalformedInputError(f"'{key}' must map names to version strings", source, location)
    return dict(value)


def _entries_from_packages(packages: dict, source: str) -> dict[str, LockEntry]:
    entries: dict[str, LockEntry] = {}
    for location, data in packages.items():
        if not isinstance(data, dict):
            raise MalformedInputError("package entry must be an object", source, location)
        # for an aliased install "name" holds the real package behind the folder name
        name = data.get("name")
        entries[location] = LockEntry(
            location=location,
            name=name or location_name(location) or "root",
            version=data.get("version"),
            dependencies=_string_map(data, "dependencies", source, location),
            optional_dependencies=_string_map(data, "optionalDependencies", source, location),
            peer_dependencies=_string_map(data, "peerDependencies", source, location),
            dev=bool(data.get("dev", False)),
            optional=bool(data.get("optional", False)),
            link=bool(data.get("link", False)),
            resolved=data.get("resolved"),
        )
    return entries


def _v1_package(name: str, raw) -> tuple[str, str | None]:
    """Real package name and version of a v1 entry."""
    if not isinstance(raw, str):
        return name, None
    if raw.startswith("npm:"):
        # aliased install, e.g. "npm:string-width@4.2.3"
        real_name, _, version = raw[len("npm:"):].rpartition("@")
        return real_name or name, version
    if re.match(r"^[a-z+]+:", raw):
        return name, None
    return name, raw


def _flatten_v1(dependencies: dict, parent: str, entries: dict[str, LockEntry], source: str) -> None:
    if not isinstance(dependencies, dict):
        raise MalformedInputError("'dependencies' must be an object", source, parent)
    for name, data in sorted(dependencies.items()):
        location = f"{parent}/node_modules/{name}" if parent else f"node_modules/{name}"
        if not isinstance(data, dict):
            raise MalformedInputError("dependency entry must be an object", source, location)
        package_name, version = _v1_package(name, data.get("version"))
        entries[location] = LockEntry(
            location=location,
            name=package_name,
            version=version,
            dependencies=_string_map(data, "requires", source, location),
            dev=bool(data.get("dev", False)),
            optional=bool(data.get("optional", False)),
            resolved=data.get("resolved"),
        )
        _flatten_v1(data.get("dependencies") or {}, location, entries, source)
