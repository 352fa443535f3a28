"""Vulnerability matching: graph nodes against an advisory source."""

import asyncio
import logging

from .advisories import AdvisorySource
from .errors import DepMendError, LookupFailure
from .graph import ROOT, DependencyGraph
from .models import Advisory, Finding, Severity

logger = logging.getLogger(__name__)


class VulnerabilityMatcher:
    """Cross-references graph nodes with advisories."""

    def __init__(
        self,
        source: AdvisorySource,
        concurrency_limit: int = 8,
        severity_floor: Severity = Severity.LOW,
        partial_results: bool = False,
    ):
        """Initialize the matcher.

        Args:
            source: Advisory source to query
            concurrency_limit: Maximum concurrent lookups
            severity_floor: Advisories below this severity are ignored
            partial_results: Record failed lookups instead of aborting
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.source = source
        self.concurrency_limit = concurrency_limit
        self.severity_floor = Severity.parse(severity_floor)
        self.partial_results = partial_results
        self.failed: dict[str, LookupFailure] = {}
        self._cache: dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(concurrency_limit)

    @property
    def completed_packages(self) -> list[str]:
        return sorted(
            name for name, task in self._cache.items() if task.done() and not task.cancelled() and not task.exception()
        )

    async def lookup(self, package_name: str) -> list[Advisory]:
        """Advisories for a package, queried at most once per matcher."""
        task = self._cache.get(package_name)
        if task is None:
            task = asyncio.ensure_future(self._fetch(package_name))
            self._cache[package_name] = task
        return await task

    async def _fetch(self, package_name: str) -> list[Advisory]:
        async with self._semaphore:
            logger.debug("Looking up advisories for %s via %s", package_name, self.source.name)
            try:
                advisories = await self.source.lookup(package_name)
            except DepMendError:
                raise
            except Exception as e:
                raise LookupFailure(package_name, e) from e
        return [a for a in advisories if a.severity.rank >= self.severity_floor.rank]

    async def _lookup_or_skip(self, package_name: str) -> list[Advisory]:
        try:
            return await self.lookup(package_name)
        except LookupFailure as e:
            if not self.partial_results:
                raise
            logger.warning("%s; continuing without it", e)
            self.failed[package_name] = e
            return []

    async def lookup_all(self, names: list[str]) -> dict[str, list[Advisory]]:
        """Look up several packages concurrently; cancel the rest on failure."""
        tasks = [asyncio.ensure_future(self._lookup_or_skip(name)) for name in names]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            for task in self._cache.values():
                if not task.done():
                    task.cancel()
            raise
        return dict(zip(names, results))

    async def advisories_for(self, findings: list[Finding]) -> dict[str, list[Advisory]]:
        """Every advisory known for the packages named in ``findings``, served from the cache."""
        return await self.lookup_all(sorted({finding.package.name for finding in findings}))

    async def match(self, graph: DependencyGraph) -> list[Finding]:
        """Produce findings in traversal order, then severity descending.

        Raises:
            LookupFailure: if a lookup fails and partial results are off
        """
        nodes = [node for node in graph.walk() if node.location != ROOT]
        names = list(dict.fromkeys(node.name for node in nodes))
        advisories = await self.lookup_all(names)

        findings = []
        for node in nodes:
            matched = [a for a in advisories[node.name] if a.affects(node.version)]
            matched.sort(key=lambda a: (-a.severity.rank, a.id))
            findings.extend(Finding(location=node.location, package=node.package, advisory=a) for a in matched)

        logger.debug("Matched %d finding(s) across %d package(s)", len(findings), len(names))
        return findings
