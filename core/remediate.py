"""End-to-end remediation run: load, match, plan, verify."""

import asyncio

from .advisories import AdvisorySource
from .config import PlannerSettings
from .errors import RunCancelledError
from .graph import DependencyGraph, load_graph
from .match import VulnerabilityMatcher
from .models import RemediationReport
from .parse_node import parse_lockfile, parse_package_json
from .planner import RemediationPlanner
from .report import render_npm_overrides
from .verify import PlanVerifier


async def remediate_graph(
    graph: DependencyGraph,
    source: AdvisorySource,
    settings: PlannerSettings | None = None,
) -> RemediationReport:
    """Match, plan and verify an already loaded graph.

    Raises:
        LookupFailure: if an advisory lookup fails outside partial mode
        RunCancelledError: if the run is cancelled before a plan exists
    """
    settings = settings or PlannerSettings()
    matcher = VulnerabilityMatcher(
        source,
        concurrency_limit=settings.concurrency_limit,
        severity_floor=settings.severity_floor,
        partial_results=settings.partial_results,
    )

    try:
        findings = await matcher.match(graph)
        known = await matcher.advisories_for(findings)
        plan = RemediationPlanner(settings.allow_positional_overrides).plan(graph, findings, known)
        verification = await PlanVerifier(matcher).verify(graph, plan)
    except asyncio.CancelledError as e:
        raise RunCancelledError(matcher.completed_packages) from e

    return RemediationReport(
        findings=findings,
        plan=plan,
        verification=verification,
        skipped_packages=sorted(matcher.failed),
        npm_overrides=render_npm_overrides(plan),
    )


async def remediate(
    manifest_content: str,
    lockfile_content: str,
    source: AdvisorySource,
    settings: PlannerSettings | None = None,
    manifest_name: str = "package.json",
    lockfile_name: str = "package-lock.json",
) -> RemediationReport:
    """Run the whole pipeline on package.json and lockfile contents.

    Raises:
        MalformedInputError: if either input cannot be loaded
    """
    settings = settings or PlannerSettings()
    manifest = parse_package_json(manifest_content, include_dev=settings.include_dev, source=manifest_name)
    lockfile = parse_lockfile(lockfile_content, source=lockfile_name)
    graph = load_graph(manifest, lockfile)
    return await remediate_graph(graph, source, settings)
