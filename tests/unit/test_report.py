"""Tests for report rendering."""

import json

import pytest
from rich.console import Console

from core.advisories import StaticAdvisorySource
from core.config import PlannerSettings
from core.models import Override, Plan, RemediationReport, VerificationResult
from core.ranges import parse_range
from core.remediate import remediate_graph
from core.report import (
    EXIT_OK,
    EXIT_PARTIAL,
    exit_status,
    format_json,
    plan_to_dict,
    render_npm_overrides,
    render_summary,
    update_manifest_content,
)


@pytest.fixture
def sample_report(sample_graph, sample_advisories):
    async def _run(**settings):
        source = StaticAdvisorySource.from_records(sample_advisories)
        return await remediate_graph(sample_graph, source, PlannerSettings(**settings))

    return _run


class TestPlanToDict:
    """Test the machine-readable report."""

    @pytest.mark.asyncio
    async def test_dispositions(self, sample_report):
        """Should give every finding a disposition."""
        data = plan_to_dict(await sample_report())

        assert data["outcome"] == "partial"
        assert data["exit_status"] == EXIT_PARTIAL
        assert [o["package"] for o in data["overrides"]] == ["minimist", "qs"]
        assert data["overrides"][1] == {
            "package": "qs",
            "range": "^6.5.4",
            "version": "6.5.4",
            "location": None,
            "parent_chain": [],
        }

        by_key = {(f["location"], f["advisory"]): f for f in data["findings"]}
        assert by_key[("node_modules/qs", "ADV-QS")]["disposition"] == "resolved"
        assert by_key[("node_modules/qs", "ADV-QS")]["override"] == 1
        conflict = by_key[("node_modules/tool-y", "ADV-TOOLY")]
        assert conflict["disposition"] == "unresolved-conflict"
        assert conflict["reason"] == "ConstraintConflict"
        assert data["verification"] == {"valid": True, "regressed": [], "vanished": []}

    @pytest.mark.asyncio
    async def test_json_is_byte_identical(self, sample_report):
        """Should serialize two identical runs to the same bytes."""
        first = format_json(await sample_report())
        second = format_json(await sample_report())
        assert first == second
        assert json.loads(first)["npm_overrides"] == {"minimist": "^3.0.0", "qs": "^6.5.4"}


class TestNpmOverrides:
    """Test package.json overrides output."""

    def test_nested_positional_override(self):
        plan = Plan(
            overrides=(
                Override("qs", parse_range("^6.5.4")),
                Override("tool-y", parse_range(">=5.2.3"), location="x", parent_chain=("app-kit",)),
            )
        )
        assert render_npm_overrides(plan) == {"qs": "^6.5.4", "app-kit": {"tool-y": ">=5.2.3"}}

    def test_parent_with_own_override(self):
        """Should keep a parent's own override under '.'."""
        plan = Plan(
            overrides=(
                Override("app-kit", parse_range("^1.3.0")),
                Override("tool-y", parse_range(">=5.2.3"), location="x", parent_chain=("app-kit",)),
            )
        )
        assert render_npm_overrides(plan) == {"app-kit": {".": "^1.3.0", "tool-y": ">=5.2.3"}}

    def test_update_manifest_content(self, sample_package_json):
        """Should merge into existing overrides and keep other fields."""
        sample_package_json["overrides"] = {"lodash": "4.17.21", "qs": "6.0.0"}
        plan = Plan(overrides=(Override("qs", parse_range("^6.5.4")),))

        updated = json.loads(update_manifest_content(json.dumps(sample_package_json), plan))

        assert updated["overrides"] == {"lodash": "4.17.21", "qs": "^6.5.4"}
        assert updated["dependencies"] == sample_package_json["dependencies"]


class TestExitStatus:
    """Test outcome to exit status mapping."""

    def test_clean_run(self):
        report = RemediationReport(findings=[], plan=Plan(), verification=VerificationResult(valid=True))
        assert report.outcome.value == "clean"
        assert exit_status(report) == EXIT_OK

    def test_failed_verification(self):
        report = RemediationReport(findings=[], plan=Plan(), verification=VerificationResult(valid=False))
        assert report.outcome.value == "regressed"
        assert exit_status(report) == 3


class TestRenderSummary:
    """Test the console summary."""

    @pytest.mark.asyncio
    async def test_summary_tables(self, sample_report):
        console = Console(record=True, width=200)
        render_summary(await sample_report(), console)
        text = console.export_text()

        assert "Overrides" in text
        assert "ConstraintConflict" in text
        assert "Outcome: partial" in text
