"""Semantic versions and npm-style version ranges.

A ``VersionRange`` is kept as a sorted union of disjoint intervals so that
intersection, complement and "smallest satisfying version" are exact set
operations rather than string manipulation.
"""

import re
from dataclasses import dataclass, field

from semantic_version import Version

ZERO = Version("0.0.0")

_PARTIAL = re.compile(
    r"^[v=]*\s*"
    r"(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_COMPARATOR = re.compile(r"^(?P<op><=|>=|<|>|=|\^|~>|~)?(?P<version>.*)$")
_HYPHEN = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_OPERATOR_SPACE = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")
_NON_REGISTRY = re.compile(r"^(?:[a-z+]+:|git\+|github:|file:|link:|npm:|workspace:|\.{0,2}/)", re.IGNORECASE)


def _make(major: int, minor: int, patch: int, prerelease: tuple = ()) -> Version:
    return Version(major=major, minor=minor, patch=patch, prerelease=prerelease)


def parse_version(text: str) -> Version:
    """Parse an exact semantic version, dropping build metadata.

    Raises:
        ValueError: if ``text`` is not a full ``major.minor.patch`` version
    """
    candidate = text.strip().lstrip("v=").strip()
    try:
        version = Version(candidate)
    except ValueError as e:
        raise ValueError(f"Invalid version {text!r}") from e
    return _make(version.major, version.minor, version.patch, version.prerelease)


def release_tuple(version: Version) -> tuple[int, int, int]:
    return (version.major, version.minor, version.patch)


@dataclass(frozen=True)
class Interval:
    """A contiguous set of versions. ``None`` bounds are unbounded."""

    lower: Version | None = None
    lower_inclusive: bool = True
    upper: Version | None = None
    upper_inclusive: bool = False

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        return self.lower == self.upper and not (self.lower_inclusive and self.upper_inclusive)

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower or (version == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if version > self.upper or (version == self.upper and not self.upper_inclusive):
                return False
        return True

    def intersect(self, other: "Interval") -> "Interval":
        lower, lower_inclusive = self.lower, self.lower_inclusive
        if other.lower is not None:
            if lower is None or other.lower > lower:
                lower, lower_inclusive = other.lower, other.lower_inclusive
            elif other.lower == lower:
                lower_inclusive = lower_inclusive and other.lower_inclusive
        upper, upper_inclusive = self.upper, self.upper_inclusive
        if other.upper is not None:
            if upper is None or other.upper < upper:
                upper, upper_inclusive = other.upper, other.upper_inclusive
            elif other.upper == upper:
                upper_inclusive = upper_inclusive and other.upper_inclusive
        return Interval(lower, lower_inclusive, upper, upper_inclusive)

    def min_version(self) -> Version | None:
        """Smallest release-or-prerelease version inside the interval."""
        if self.lower is None:
            candidate = ZERO
        elif self.lower_inclusive:
            candidate = self.lower
        else:
            candidate = self.lower.next_patch()
        return candidate if self.contains(candidate) else None

    def __str__(self) -> str:
        if self.lower is None and self.upper is None:
            return "*"
        if self.lower is not None and self.upper is not None:
            if self.lower == self.upper and self.lower_inclusive and self.upper_inclusive:
                return str(self.lower)
            if self.lower_inclusive and not self.upper_inclusive and not self.upper.prerelease:
                if self.upper == _caret_upper(self.lower):
                    return f"^{self.lower}"
                if self.upper == _tilde_upper(self.lower):
                    return f"~{self.lower}"
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{self.upper}")
        return " ".join(parts)


def _caret_upper(version: Version) -> Version:
    if version.major:
        return _make(version.major + 1, 0, 0)
    if version.minor:
        return _make(0, version.minor + 1, 0)
    return _make(0, 0, version.patch + 1)


def _tilde_upper(version: Version) -> Version:
    return _make(version.major, version.minor + 1, 0)


def _lower_key(interval: Interval):
    if interval.lower is None:
        return (0, ZERO, 0)
    return (1, interval.lower, 0 if interval.lower_inclusive else 1)


def _touches(left: Interval, right: Interval) -> bool:
    """Whether ``right`` (which starts no earlier) overlaps or abuts ``left``."""
    if left.upper is None or right.lower is None:
        return True
    if right.lower < left.upper:
        return True
    if right.lower == left.upper:
        return left.upper_inclusive or right.lower_inclusive
    return False


def _normalize(intervals) -> tuple[Interval, ...]:
    ordered = sorted((i for i in intervals if not i.is_empty()), key=_lower_key)
    merged: list[Interval] = []
    for interval in ordered:
        if merged and _touches(merged[-1], interval):
            last = merged[-1]
            if last.upper is None or interval.upper is None:
                upper, upper_inclusive = None, False
            elif interval.upper > last.upper:
                upper, upper_inclusive = interval.upper, interval.upper_inclusive
            elif interval.upper == last.upper:
                upper, upper_inclusive = last.upper, last.upper_inclusive or interval.upper_inclusive
            else:
                upper, upper_inclusive = last.upper, last.upper_inclusive
            merged[-1] = Interval(last.lower, last.lower_inclusive, upper, upper_inclusive)
        else:
            merged.append(interval)
    return tuple(merged)


@dataclass(frozen=True)
class VersionRange:
    """A predicate over versions: a union of disjoint, sorted intervals.

    ``prerelease_tuples`` lists the ``major.minor.patch`` triples whose
    prerelease versions the range admits, following npm's rule that a
    prerelease only satisfies a range that names a prerelease of the same
    release.
    """

    intervals: tuple[Interval, ...] = ()
    prerelease_tuples: frozenset = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "intervals", _normalize(self.intervals))

    @classmethod
    def any(cls) -> "VersionRange":
        return cls((Interval(),))

    @classmethod
    def empty(cls) -> "VersionRange":
        return cls(())

    @classmethod
    def exact(cls, version: Version) -> "VersionRange":
        tuples = frozenset({release_tuple(version)}) if version.prerelease else frozenset()
        return cls((Interval(version, True, version, True),), tuples)

    def contains(self, version: Version, include_prerelease: bool = False) -> bool:
        if version.prerelease and not include_prerelease:
            if release_tuple(version) not in self.prerelease_tuples:
                return False
        return any(interval.contains(version) for interval in self.intervals)

    def __contains__(self, version: Version) -> bool:
        return self.contains(version)

    def intersect(self, other: "VersionRange") -> "VersionRange":
        pieces = [a.intersect(b) for a in self.intervals for b in other.intervals]
        return VersionRange(tuple(pieces), self.prerelease_tuples & other.prerelease_tuples)

    def union(self, other: "VersionRange") -> "VersionRange":
        return VersionRange(self.intervals + other.intervals, self.prerelease_tuples | other.prerelease_tuples)

    def complement(self) -> "VersionRange":
        gaps = []
        lower, lower_inclusive = None, True
        for interval in self.intervals:
            if interval.lower is not None:
                gaps.append(Interval(lower, lower_inclusive, interval.lower, not interval.lower_inclusive))
            if interval.upper is None:
                return VersionRange(tuple(gaps), self.prerelease_tuples)
            lower, lower_inclusive = interval.upper, not interval.upper_inclusive
        gaps.append(Interval(lower, lower_inclusive, None, False))
        return VersionRange(tuple(gaps), self.prerelease_tuples)

    def satisfiable_intervals(self) -> list[Interval]:
        return [interval for interval in self.intervals if interval.min_version() is not None]

    def is_satisfiable(self) -> bool:
        return bool(self.satisfiable_intervals())

    def min_version(self) -> Version | None:
        for interval in self.intervals:
            candidate = interval.min_version()
            if candidate is not None:
                return candidate
        return None

    def lowest_bound(self) -> Version | None:
        if not self.intervals:
            return None
        return self.intervals[0].lower

    def __str__(self) -> str:
        if not self.intervals:
            return "<0.0.0"
        return " || ".join(str(interval) for interval in self.intervals)


def is_registry_spec(spec: str) -> bool:
    """Whether a dependency specifier is a semver range rather than a git/file/alias/tag spec."""
    stripped = spec.strip()
    if _NON_REGISTRY.match(stripped):
        return False
    try:
        parse_range(stripped)
    except ValueError:
        return False
    return True


def _parse_partial(text: str):
    match = _PARTIAL.match(text)
    if not match:
        raise ValueError(f"Invalid version {text!r} in range")
    parts = []
    for name in ("major", "minor", "patch"):
        value = match.group(name)
        if value is None or value in "xX*" or (parts and parts[-1] is None):
            parts.append(None)
        else:
            parts.append(int(value))
    prerelease = tuple(match.group("pre").split(".")) if match.group("pre") and parts[2] is not None else ()
    return parts[0], parts[1], parts[2], prerelease


def _comparator_interval(op: str, text: str) -> tuple[Interval, tuple | None]:
    major, minor, patch, prerelease = _parse_partial(text)
    if major is None:
        if op in ("<", ">"):
            return Interval(ZERO, False, ZERO, False), None
        return Interval(), None

    base = _make(major, minor or 0, patch or 0, prerelease)
    pre_tuple = release_tuple(base) if prerelease else None
    if minor is None:
        next_step = _make(major + 1, 0, 0)
    elif patch is None:
        next_step = _make(major, minor + 1, 0)
    else:
        next_step = None

    if op in ("", "="):
        if next_step is None:
            return Interval(base, True, base, True), pre_tuple
        return Interval(base, True, next_step, False), pre_tuple
    if op == ">":
        if next_step is None:
            return Interval(base, False, None), pre_tuple
        return Interval(next_step, True, None), pre_tuple
    if op == ">=":
        return Interval(base, True, None), pre_tuple
    if op == "<":
        return Interval(None, True, base, False), pre_tuple
    if op == "<=":
        if next_step is None:
            return Interval(None, True, base, True), pre_tuple
        return Interval(None, True, next_step, False), pre_tuple
    if op == "^":
        if major or minor is None:
            upper = _make(major + 1, 0, 0)
        elif minor or patch is None:
            upper = _make(0, minor + 1, 0)
        else:
            upper = _make(0, 0, patch + 1)
        return Interval(base, True, upper, False), pre_tuple
    # tilde
    if minor is None:
        return Interval(base, True, _make(major + 1, 0, 0), False), pre_tuple
    return Interval(base, True, _make(major, minor + 1, 0), False), pre_tuple


def _parse_comparator_set(text: str) -> VersionRange:
    text = text.strip()
    hyphen = _HYPHEN.match(text)
    if hyphen:
        low, low_pre = _comparator_interval(">=", hyphen.group("low"))
        high, high_pre = _comparator_interval("<=", hyphen.group("high"))
        tuples = frozenset(t for t in (low_pre, high_pre) if t)
        return VersionRange((low.intersect(high),), tuples)

    text = _OPERATOR_SPACE.sub(r"\1", text.replace(",", " "))
    interval = Interval()
    tuples = set()
    for token in text.split():
        match = _COMPARATOR.match(token)
        op = match.group("op") or ""
        if op == "~>":
            op = "~"
        piece, pre_tuple = _comparator_interval(op, match.group("version"))
        interval = interval.intersect(piece)
        if pre_tuple:
            tuples.add(pre_tuple)
    return VersionRange((interval,), frozenset(tuples))


def parse_range(text: str) -> VersionRange:
    """Parse an npm range expression.

    Accepts ``*``/``x``/empty, exact and partial versions, ``< <= > >= =``
    comparators, caret, tilde, hyphen ranges, comma or whitespace separated
    comparator sets and ``||`` unions.

    Raises:
        ValueError: if the text is not a range
    """
    if text is None:
        raise ValueError("Range is missing")
    result = VersionRange.empty()
    for alternative in text.split("||"):
        stripped = alternative.strip()
        if stripped in ("", "*", "x", "X"):
            return VersionRange.any()
        result = result.union(_parse_comparator_set(stripped))
    return result
