"""Remediation planning: choose overrides that remove findings."""

import logging
from collections.abc import Iterable, Mapping
from functools import reduce

from semantic_version import Version

from .graph import DependencyGraph
from .models import (
    Advisory,
    Finding,
    Override,
    Plan,
    Resolution,
    UnresolvedFinding,
    UnresolvedReason,
)
from .ranges import VersionRange

logger = logging.getLogger(__name__)


def choose_interval(candidate: VersionRange, current: Version) -> VersionRange:
    """Pick the piece of ``candidate`` that changes the resolved version least.

    Prefers the interval whose smallest version is the smallest one at or
    above ``current``; when every interval lies below, the highest one. An
    interval with no lower bound is used only when nothing else is left, since
    its smallest version is 0.0.0.
    """
    intervals = candidate.satisfiable_intervals()
    intervals = [i for i in intervals if i.lower is not None] or intervals
    above = [i for i in intervals if i.min_version() >= current]
    if above:
        chosen = min(above, key=lambda i: i.min_version())
    else:
        chosen = max(intervals, key=lambda i: i.min_version())
    return VersionRange((chosen,), candidate.prerelease_tuples)


class RemediationPlanner:
    """Computes a minimal override plan for a set of findings.

    Findings are grouped by package. One override per package is preferred:
    the intersection of every matched advisory's patched range, minus the
    affected range of every other advisory known for the package, narrowed by
    the range package.json declares when the package is a direct dependency.
    """

    def __init__(self, allow_positional_overrides: bool = False):
        self.allow_positional_overrides = allow_positional_overrides

    def plan(
        self,
        graph: DependencyGraph,
        findings: list[Finding],
        known_advisories: Mapping[str, list[Advisory]] | None = None,
    ) -> Plan:
        """Plan overrides for ``findings``.

        ``known_advisories`` maps package names to every advisory the source
        reported for them, including ones that miss the installed version; a
        chosen version must avoid those too.
        """
        known_advisories = known_advisories or {}
        groups: dict[str, list[Finding]] = {}
        for finding in findings:
            groups.setdefault(finding.package.name, []).append(finding)

        overrides: list[Override] = []
        resolved: dict[tuple, Override] = {}
        unresolved: dict[tuple, UnresolvedFinding] = {}

        for name in sorted(groups):
            group_overrides, group_resolved, group_unresolved = self._plan_group(
                graph, name, groups[name], known_advisories.get(name, ())
            )
            overrides.extend(group_overrides)
            resolved.update(group_resolved)
            unresolved.update(group_unresolved)

        plan = Plan(
            overrides=tuple(overrides),
            resolutions=tuple(Resolution(f, resolved[f.key]) for f in findings if f.key in resolved),
            unresolved=tuple(unresolved[f.key] for f in findings if f.key in unresolved),
        )
        logger.info(
            "Planned %d override(s); %d finding(s) resolved, %d unresolved",
            len(plan.overrides),
            len(plan.resolutions),
            len(plan.unresolved),
        )
        return plan

    def _plan_group(self, graph: DependencyGraph, name: str, findings: list[Finding], known: Iterable[Advisory]):
        overrides: list[Override] = []
        resolved: dict[tuple, Override] = {}
        unresolved: dict[tuple, UnresolvedFinding] = {}

        advisories: dict[str, Advisory] = {}
        for finding in findings:
            advisories.setdefault(finding.advisory.id, finding.advisory)

        no_fix = [f for f in findings if not f.advisory.has_fix]
        fixable = [f for f in findings if f.advisory.has_fix]
        for finding in no_fix:
            unresolved[finding.key] = UnresolvedFinding(
                finding, UnresolvedReason.NO_UPSTREAM_FIX, f"{finding.advisory.id} has no patched version"
            )
        if not fixable:
            return overrides, resolved, unresolved

        fixing = [a for a in advisories.values() if a.has_fix]
        patched = reduce(lambda acc, a: acc.intersect(a.patched), fixing[1:], fixing[0].patched)
        avoided = [a for a in known if a.id not in advisories]
        for advisory in avoided:
            patched = patched.intersect(advisory.affected.complement())
        if not patched.is_satisfiable():
            ids = ", ".join(a.id for a in fixing)
            if avoided:
                ids += " while avoiding " + ", ".join(a.id for a in avoided)
            for finding in fixable:
                unresolved[finding.key] = UnresolvedFinding(
                    finding,
                    UnresolvedReason.NO_UPSTREAM_FIX,
                    f"no single version of {name} satisfies the patched ranges of {ids}",
                )
            return overrides, resolved, unresolved

        current = max(f.package.version for f in fixable)
        direct_range = graph.manifest_range(name)
        candidate = patched if direct_range is None else patched.intersect(direct_range)

        if candidate.is_satisfiable():
            override = Override(package_name=name, range=choose_interval(candidate, current))
            overrides.append(override)
            for finding in fixable:
                resolved[finding.key] = override
            self._absorb(no_fix, override, resolved, unresolved)
            return overrides, resolved, unresolved

        entry = graph.manifest.entry(name)
        conflict = f"{name}@{entry.spec} declared in package.json excludes {patched}"
        conflicting = fixable
        if self.allow_positional_overrides:
            conflicting = []
            by_location: dict[str, list[Finding]] = {}
            for finding in fixable:
                ancestor = graph.nearest_direct_ancestor(finding.location)
                if ancestor is not None and ancestor.location == finding.location:
                    conflicting.append(finding)
                else:
                    by_location.setdefault(finding.location, []).append(finding)
            for location in sorted(by_location):
                located = by_location[location]
                override = Override(
                    package_name=name,
                    range=choose_interval(patched, located[0].package.version),
                    location=location,
                    parent_chain=graph.parent_chain(location),
                )
                overrides.append(override)
                for finding in located:
                    resolved[finding.key] = override
                self._absorb([f for f in no_fix if f.location == location], override, resolved, unresolved)

        for finding in conflicting:
            unresolved[finding.key] = UnresolvedFinding(finding, UnresolvedReason.CONSTRAINT_CONFLICT, conflict)
        return overrides, resolved, unresolved

    @staticmethod
    def _absorb(no_fix: list[Finding], override: Override, resolved: dict, unresolved: dict) -> None:
        """Count unfixable findings as resolved when the override moves off their affected range."""
        representative = override.representative
        for finding in no_fix:
            if not finding.advisory.affects(representative):
                unresolved.pop(finding.key, None)
                resolved[finding.key] = override
