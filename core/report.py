"""Plan reports: JSON, console summary, and npm overrides output."""

import json

from rich.console import Console
from rich.table import Table

from .models import Finding, Outcome, Override, Plan, RemediationReport, UnresolvedReason

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_INPUT_ERROR = 2
EXIT_FAILED = 3

_EXIT_BY_OUTCOME = {
    Outcome.CLEAN: EXIT_OK,
    Outcome.RESOLVED: EXIT_OK,
    Outcome.PARTIAL: EXIT_PARTIAL,
    Outcome.REGRESSED: EXIT_FAILED,
}

_DISPOSITIONS = {
    UnresolvedReason.CONSTRAINT_CONFLICT: "unresolved-conflict",
    UnresolvedReason.NO_UPSTREAM_FIX: "unresolved-no-fix",
}

_SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "moderate": "yellow",
    "low": "dim",
}


def exit_status(report: RemediationReport) -> int:
    """Process exit status for a finished run."""
    return _EXIT_BY_OUTCOME[report.outcome]


def _finding_dict(finding: Finding) -> dict:
    advisory = finding.advisory
    return {
        "package": finding.package.name,
        "version": str(finding.package.version),
        "location": finding.location,
        "advisory": advisory.id,
        "severity": advisory.severity.value,
        "title": advisory.title,
        "url": advisory.url,
        "affected": str(advisory.affected),
        "patched": str(advisory.patched),
    }


def _override_dict(override: Override) -> dict:
    return {
        "package": override.package_name,
        "range": str(override.range),
        "version": str(override.representative),
        "location": override.location,
        "parent_chain": list(override.parent_chain),
    }


def plan_to_dict(report: RemediationReport) -> dict:
    """Machine-readable report: every finding with its disposition."""
    plan = report.plan
    index = {override: i for i, override in enumerate(plan.overrides)}
    unresolved = {item.finding.key: item for item in plan.unresolved}

    findings = []
    for finding in report.findings:
        item = _finding_dict(finding)
        override = plan.override_for(finding)
        if override is not None:
            item.update(disposition="resolved", override=index[override])
        else:
            entry = unresolved[finding.key]
            item.update(disposition=_DISPOSITIONS[entry.reason], reason=entry.reason.value, detail=entry.detail)
        findings.append(item)

    verification = report.verification
    return {
        "outcome": report.outcome.value,
        "exit_status": exit_status(report),
        "overrides": [_override_dict(o) for o in plan.overrides],
        "npm_overrides": report.npm_overrides,
        "findings": findings,
        "verification": {
            "valid": verification.valid,
            "regressed": [_finding_dict(f) for f in verification.regressed],
            "vanished": [_finding_dict(f) for f in verification.vanished],
        },
        "skipped_packages": sorted(report.skipped_packages),
    }


def format_json(report: RemediationReport) -> str:
    """Serialize the report; identical input gives byte-identical output."""
    return json.dumps(plan_to_dict(report), indent=2, sort_keys=True)


def render_npm_overrides(plan: Plan) -> dict:
    """The plan as a package.json ``overrides`` object.

    Positional overrides nest under their parent chain, e.g.
    ``{"parent": {"pkg": "^1.2.3"}}``.
    """
    overrides: dict = {}
    for override in plan.overrides:
        target = overrides
        for parent in override.parent_chain if override.is_positional else ():
            existing = target.get(parent)
            if isinstance(existing, str):
                target[parent] = {".": existing}
            target = target.setdefault(parent, {})
        value = str(override.range)
        if isinstance(target.get(override.package_name), dict):
            target[override.package_name]["."] = value
        else:
            target[override.package_name] = value
    return overrides


def _merge(existing: dict, update: dict) -> dict:
    merged = dict(existing)
    for key, value in update.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = _merge(current, value)
        elif isinstance(value, dict) and isinstance(current, str):
            merged[key] = _merge({".": current}, value)
        elif isinstance(value, str) and isinstance(current, dict):
            merged[key] = {**current, ".": value}
        else:
            merged[key] = value
    return merged


def update_manifest_content(content: str, plan: Plan) -> str:
    """Merge the plan's overrides into package.json content."""
    data = json.loads(content)
    data["overrides"] = _merge(data.get("overrides") or {}, render_npm_overrides(plan))
    return json.dumps(data, indent=2) + "\n"


def render_summary(report: RemediationReport, console: Console) -> None:
    """Human-readable summary mirroring the JSON report."""
    plan = report.plan

    if plan.overrides:
        table = Table(title="Overrides")
        table.add_column("Package")
        table.add_column("Range")
        table.add_column("Version")
        table.add_column("Scope")
        for override in plan.overrides:
            scope = " > ".join(override.parent_chain) if override.is_positional else "all occurrences"
            table.add_row(override.package_name, str(override.range), str(override.representative), scope)
        console.print(table)

    if report.findings:
        unresolved = {item.finding.key: item for item in plan.unresolved}
        table = Table(title="Findings")
        table.add_column("Package")
        table.add_column("Location")
        table.add_column("Advisory")
        table.add_column("Severity")
        table.add_column("Disposition")
        for finding in report.findings:
            severity = finding.advisory.severity.value
            override = plan.override_for(finding)
            if override is not None:
                disposition = f"resolved by {override.package_name}@{override.range}"
            else:
                entry = unresolved[finding.key]
                disposition = f"{entry.reason.value}: {entry.detail}"
            table.add_row(
                str(finding.package),
                finding.location,
                finding.advisory.id,
                f"[{_SEVERITY_STYLES[severity]}]{severity}[/]",
                disposition,
            )
        console.print(table)
    else:
        console.print("No vulnerable packages found")

    for package_name in sorted(report.skipped_packages):
        console.print(f"Skipped {package_name}: advisory lookup failed", style="yellow")

    verification = report.verification
    if not verification.valid:
        for finding in verification.regressed:
            console.print(f"Still vulnerable after plan: {finding.package} ({finding.advisory.id})", style="red")
        for finding in verification.vanished:
            console.print(f"Expected to remain but gone: {finding.package} ({finding.advisory.id})", style="red")

    styles = {
        Outcome.CLEAN: "green",
        Outcome.RESOLVED: "green",
        Outcome.PARTIAL: "yellow",
        Outcome.REGRESSED: "bold red",
    }
    console.print(f"Outcome: {report.outcome.value}", style=styles[report.outcome])
