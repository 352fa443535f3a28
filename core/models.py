"""Core data models for DepMend."""

from dataclasses import dataclass, field
from enum import Enum

from semantic_version import Version

from .ranges import VersionRange, parse_range

_SEVERITY_ALIASES = {
    "info": "low",
    "informational": "low",
    "medium": "moderate",
}


class Severity(str, Enum):
    """Advisory severity, ordered low < moderate < high < critical."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        if isinstance(value, Severity):
            return value
        normalized = str(value).strip().lower()
        return cls(_SEVERITY_ALIASES.get(normalized, normalized))


class UnresolvedReason(str, Enum):
    """Why a finding has no override in the plan."""

    CONSTRAINT_CONFLICT = "ConstraintConflict"
    NO_UPSTREAM_FIX = "NoUpstreamFix"


@dataclass
class ManifestEntry:
    """A single dependency entry in a manifest file."""

    name: str
    spec: str | None = None
    dependency_type: str = "prod"  # prod, dev, optional
    source_type: str = "registry"  # registry, vcs, path, url, alias, tag

    @property
    def range(self) -> VersionRange | None:
        """Declared range, or None for specs that are not semver ranges."""
        if self.source_type != "registry" or self.spec is None:
            return None
        return parse_range(self.spec)


@dataclass
class Manifest:
    """A parsed dependency manifest."""

    ecosystem: str  # node
    raw: str
    entries: list[ManifestEntry]
    name: str = "root"
    version: str = "0.0.0"

    def entry(self, name: str) -> ManifestEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


@dataclass(frozen=True)
class Package:
    """A package identity: name plus resolved version."""

    name: str
    version: Version

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class Advisory:
    """A published vulnerability affecting a range of one package's versions."""

    id: str
    package_name: str
    affected: VersionRange
    patched: VersionRange
    severity: Severity = Severity.MODERATE
    title: str = ""
    url: str = ""

    def affects(self, version: Version) -> bool:
        return self.affected.contains(version, include_prerelease=True)

    @property
    def has_fix(self) -> bool:
        return self.patched.is_satisfiable()


@dataclass(frozen=True)
class Finding:
    """A graph node whose resolved version falls in an advisory's affected range."""

    location: str
    package: Package
    advisory: Advisory

    @property
    def key(self) -> tuple[str, str]:
        return (self.location, self.advisory.id)


@dataclass(frozen=True)
class Override:
    """A forced resolution for a package.

    ``location`` is None for an override that applies to every occurrence;
    otherwise the override is positional and ``parent_chain`` holds the
    names of the packages enclosing that occurrence.
    """

    package_name: str
    range: VersionRange
    location: str | None = None
    parent_chain: tuple[str, ...] = ()

    @property
    def is_positional(self) -> bool:
        return self.location is not None

    @property
    def representative(self) -> Version | None:
        return self.range.min_version()


@dataclass(frozen=True)
class Resolution:
    finding: Finding
    override: Override


@dataclass(frozen=True)
class UnresolvedFinding:
    finding: Finding
    reason: UnresolvedReason
    detail: str = ""


@dataclass(frozen=True)
class Plan:
    """Overrides in application order plus the disposition of every finding."""

    overrides: tuple[Override, ...] = ()
    resolutions: tuple[Resolution, ...] = ()
    unresolved: tuple[UnresolvedFinding, ...] = ()

    def override_for(self, finding: Finding) -> Override | None:
        for resolution in self.resolutions:
            if resolution.finding.key == finding.key:
                return resolution.override
        return None

    @property
    def unresolved_keys(self) -> frozenset:
        return frozenset(item.finding.key for item in self.unresolved)

    @property
    def is_complete(self) -> bool:
        return not self.unresolved


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of re-matching a graph with a plan applied.

    A plan is valid only when the remaining findings are exactly the plan's
    unresolved findings. Findings present but not expected are ``regressed``;
    expected findings that disappeared are ``vanished``.
    """

    valid: bool
    regressed: tuple[Finding, ...] = ()
    vanished: tuple[Finding, ...] = ()


class Outcome(str, Enum):
    """Outcome class of a run, mapped to the process exit status."""

    CLEAN = "clean"
    RESOLVED = "resolved"
    PARTIAL = "partial"
    REGRESSED = "regressed"


@dataclass
class RemediationReport:
    """Everything one run produced."""

    findings: list[Finding]
    plan: Plan
    verification: VerificationResult
    skipped_packages: list[str] = field(default_factory=list)
    npm_overrides: dict = field(default_factory=dict)

    @property
    def outcome(self) -> Outcome:
        if not self.verification.valid:
            return Outcome.REGRESSED
        if self.plan.unresolved or self.skipped_packages:
            return Outcome.PARTIAL
        if not self.findings:
            return Outcome.CLEAN
        return Outcome.RESOLVED


@dataclass
class LockEntry:
    """One resolved package position recorded in a lockfile."""

    location: str
    name: str
    version: str | None
    dependencies: dict[str, str] = field(default_factory=dict)
    optional_dependencies: dict[str, str] = field(default_factory=dict)
    peer_dependencies: dict[str, str] = field(default_factory=dict)
    dev: bool = False
    optional: bool = False
    link: bool = False
    resolved: str | None = None


@dataclass
class Lockfile:
    """A parsed lockfile, normalized to location-keyed entries."""

    format: str  # npm-v1, npm-v2, npm-v3
    raw: str
    entries: dict[str, LockEntry]
    source: str = "package-lock.json"
