"""Dependency graph model and the manifest + lockfile loader."""

import dataclasses
import logging
from collections import deque
from collections.abc import Mapping
from types import MappingProxyType

from semantic_version import Version

from .errors import MalformedInputError
from .models import LockEntry, Lockfile, Manifest, Package
from .parse_node import location_name, parent_location
from .ranges import ZERO, VersionRange, is_registry_spec, parse_range, parse_version

logger = logging.getLogger(__name__)

ROOT = ""


@dataclasses.dataclass(frozen=True)
class Edge:
    """A declared dependency and the node chosen to satisfy it."""

    name: str
    spec: str
    range: VersionRange
    target: str
    kind: str = "prod"  # prod, dev, optional, peer


@dataclasses.dataclass(frozen=True)
class GraphNode:
    """One resolved package at one position in the graph."""

    location: str
    package: Package
    edges: tuple[Edge, ...] = ()
    dev: bool = False
    optional: bool = False

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def version(self) -> Version:
        return self.package.version

    def edge(self, name: str) -> Edge | None:
        for edge in self.edges:
            if edge.name == name:
                return edge
        return None


class DependencyGraph:
    """Immutable resolved dependency graph keyed by lockfile location.

    Dependency cycles between nodes are allowed; every traversal tracks
    visited locations. Hypothetical states are new graphs built with
    :meth:`with_versions`, never in-place edits.
    """

    def __init__(self, nodes: Mapping[str, GraphNode], manifest: Manifest):
        if ROOT not in nodes:
            raise ValueError("graph has no root node")
        self._nodes = MappingProxyType(dict(nodes))
        self.manifest = manifest
        self._order: list[GraphNode] | None = None
        self._parents: dict[str, list[GraphNode]] | None = None

    @property
    def root(self) -> GraphNode:
        return self._nodes[ROOT]

    def node(self, location: str) -> GraphNode:
        return self._nodes[location]

    def __contains__(self, location: str) -> bool:
        return location in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self.walk())

    def walk(self) -> list[GraphNode]:
        """Stable pre-order traversal from the root, children in name order."""
        if self._order is None:
            order = []
            visited = set()
            stack = [ROOT]
            while stack:
                location = stack.pop()
                if location in visited:
                    continue
                visited.add(location)
                node = self._nodes[location]
                order.append(node)
                stack.extend(edge.target for edge in reversed(node.edges) if edge.target not in visited)
            self._order = order
        return list(self._order)

    def parents(self, location: str) -> list[GraphNode]:
        """Nodes with an edge to ``location``, in traversal order."""
        if self._parents is None:
            parents: dict[str, list[GraphNode]] = {}
            for node in self.walk():
                for edge in node.edges:
                    targets = parents.setdefault(edge.target, [])
                    if node not in targets:
                        targets.append(node)
            self._parents = parents
        return list(self._parents.get(location, []))

    def nodes_named(self, name: str) -> list[GraphNode]:
        return [node for node in self.walk() if node.location != ROOT and node.name == name]

    def direct_location(self, name: str) -> str | None:
        edge = self.root.edge(name)
        return edge.target if edge else None

    def is_direct(self, location: str) -> bool:
        return any(edge.target == location for edge in self.root.edges)

    def manifest_range(self, name: str) -> VersionRange | None:
        """The range package.json declares for ``name``, if it declares a semver range."""
        entry = self.manifest.entry(name)
        if entry is None or self.direct_location(name) is None:
            return None
        return entry.range

    def nearest_direct_ancestor(self, location: str) -> GraphNode | None:
        """Closest node at or above ``location`` that package.json depends on directly."""
        visited = set()
        queue = deque([location])
        while queue:
            current = queue.popleft()
            if current in visited or current == ROOT:
                continue
            visited.add(current)
            if self.is_direct(current):
                return self._nodes[current]
            queue.extend(parent.location for parent in self.parents(current))
        return None

    def parent_chain(self, location: str) -> tuple[str, ...]:
        """Names of the packages enclosing ``location``, outermost first.

        A hoisted node has no enclosing directory; its first dependent stands in.
        """
        chain = []
        current = parent_location(location)
        while current:
            chain.append(location_name(current))
            current = parent_location(current)
        if chain:
            return tuple(reversed(chain))
        dependents = [parent for parent in self.parents(location) if parent.location != ROOT]
        if dependents and not self.is_direct(location):
            return (dependents[0].name,)
        return ()

    def with_versions(self, replacements: Mapping[str, Version]) -> "DependencyGraph":
        """A new graph with the given locations resolved to other versions."""
        nodes = dict(self._nodes)
        for location, version in replacements.items():
            node = nodes[location]
            nodes[location] = dataclasses.replace(node, package=Package(node.name, version))
        return DependencyGraph(nodes, self.manifest)


class GraphLoader:
    """Builds a DependencyGraph from a parsed manifest and lockfile."""

    def __init__(self, manifest: Manifest, lockfile: Lockfile):
        self.manifest = manifest
        self.lockfile = lockfile
        self.entries = lockfile.entries

    def _error(self, message: str, location: str | None = None) -> MalformedInputError:
        return MalformedInputError(message, self.lockfile.source, location)

    def _follow_link(self, location: str) -> str:
        entry = self.entries[location]
        if not entry.link:
            return location
        if entry.resolved not in self.entries:
            raise self._error(f"link target {entry.resolved!r} is missing", location)
        return entry.resolved

    def _resolve(self, from_location: str, name: str) -> str | None:
        """node_modules lookup: nearest enclosing directory first, then outward."""
        current = from_location
        while current is not None:
            candidate = f"{current}/node_modules/{name}" if current else f"node_modules/{name}"
            if candidate in self.entries:
                return self._follow_link(candidate)
            current = parent_location(current)
        return None

    def _version(self, entry: LockEntry) -> Version | None:
        if entry.version is None:
            return None
        try:
            return parse_version(entry.version)
        except ValueError:
            raise self._error(f"invalid version {entry.version!r} for {entry.name}", entry.location) from None

    def _check_ownership(self, entry: LockEntry) -> None:
        ancestor = parent_location(entry.location)
        while ancestor:
            owner = self.entries.get(ancestor)
            if owner is not None and owner.name == entry.name and owner.version == entry.version:
                raise self._error(
                    f"ownership cycle: {entry.name}@{entry.version} is nested beneath itself at {ancestor}",
                    entry.location,
                )
            ancestor = parent_location(ancestor)

    def _edge(self, owner: str, owner_label: str, name: str, spec: str, kind: str) -> Edge | None:
        target = self._resolve(owner, name)
        if target is None:
            if kind in ("optional", "peer"):
                return None
            raise self._error(f"{name}@{spec} required by {owner_label} has no resolution", owner)

        version = self._version(self.entries[target])
        if version is None:
            logger.debug("Skipping unversioned dependency %s at %s", name, target)
            return None

        declared = parse_range(spec) if is_registry_spec(spec) else VersionRange.any()
        if not declared.contains(version, include_prerelease=True):
            if kind == "peer":
                logger.debug("Ignoring unmet peer dependency %s@%s of %s", name, spec, owner_label)
                return None
            raise self._error(f"{name}@{version} does not satisfy {spec} declared by {owner_label}", target)
        return Edge(name=name, spec=spec, range=declared, target=target, kind=kind)

    def _root_node(self) -> GraphNode:
        edges = []
        for entry in self.manifest.entries:
            kind = entry.dependency_type
            edge = self._edge(ROOT, "package.json", entry.name, entry.spec or "*", kind)
            if edge is not None:
                edges.append(edge)
        try:
            version = parse_version(self.manifest.version)
        except ValueError:
            version = ZERO
        return GraphNode(
            location=ROOT,
            package=Package(self.manifest.name, version),
            edges=tuple(sorted(edges, key=lambda e: e.name)),
        )

    def _build_node(self, location: str) -> GraphNode:
        entry = self.entries[location]
        self._check_ownership(entry)
        label = f"{entry.name}@{entry.version}"

        edges: dict[str, Edge] = {}
        for kind, declared in (
            ("prod", entry.dependencies),
            ("optional", entry.optional_dependencies),
            ("peer", entry.peer_dependencies),
        ):
            for name, spec in declared.items():
                if name in edges:
                    continue
                edge = self._edge(location, label, name, spec, kind)
                if edge is not None:
                    edges[name] = edge

        return GraphNode(
            location=location,
            package=Package(entry.name, self._version(entry)),
            edges=tuple(edges[name] for name in sorted(edges)),
            dev=entry.dev,
            optional=entry.optional,
        )

    def load(self) -> DependencyGraph:
        nodes = {ROOT: self._root_node()}
        queue = deque(edge.target for edge in nodes[ROOT].edges)
        while queue:
            location = queue.popleft()
            if location in nodes:
                continue
            node = self._build_node(location)
            nodes[location] = node
            queue.extend(edge.target for edge in node.edges if edge.target not in nodes)

        logger.debug("Loaded %d nodes from %s (%s)", len(nodes) - 1, self.lockfile.source, self.lockfile.format)
        return DependencyGraph(nodes, self.manifest)


def load_graph(manifest: Manifest, lockfile: Lockfile) -> DependencyGraph:
    """Build the resolved dependency graph for a manifest and its lockfile.

    Raises:
        MalformedInputError: if a resolution is missing, a resolved version
            does not satisfy its declared range, or a package is nested
            beneath an identical copy of itself
    """
    return GraphLoader(manifest, lockfile).load()
