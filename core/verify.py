"""Plan verification: re-match a graph with the plan applied."""

import logging

from .graph import DependencyGraph
from .match import VulnerabilityMatcher
from .models import Plan, VerificationResult

logger = logging.getLogger(__name__)


def apply_plan(graph: DependencyGraph, plan: Plan) -> DependencyGraph:
    """Hypothetical graph with every override's representative version in place.

    A global override rewrites every node of its package; a positional
    override rewrites only its location. The input graph is left untouched.
    """
    replacements = {}
    for override in plan.overrides:
        version = override.representative
        if version is None:
            continue
        if override.is_positional:
            locations = [override.location]
        else:
            locations = [node.location for node in graph.nodes_named(override.package_name)]
        for location in locations:
            replacements[location] = version
    return graph.with_versions(replacements)


class PlanVerifier:
    """Proves a plan by matching the graph it would produce."""

    def __init__(self, matcher: VulnerabilityMatcher):
        self.matcher = matcher

    async def verify(self, graph: DependencyGraph, plan: Plan) -> VerificationResult:
        hypothetical = apply_plan(graph, plan)
        remaining = await self.matcher.match(hypothetical)

        expected = plan.unresolved_keys
        actual = {finding.key for finding in remaining}
        regressed = tuple(f for f in remaining if f.key not in expected)
        vanished = tuple(item.finding for item in plan.unresolved if item.finding.key not in actual)

        result = VerificationResult(valid=not regressed and not vanished, regressed=regressed, vanished=vanished)
        if not result.valid:
            logger.warning(
                "Plan failed verification: %d regressed, %d vanished finding(s)", len(regressed), len(vanished)
            )
        return result
