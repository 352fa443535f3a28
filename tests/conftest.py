"""Pytest configuration and fixtures."""

import json

import pytest

from core.graph import load_graph
from core.parse_node import parse_lockfile, parse_package_json
from core.advisories import parse_advisory


@pytest.fixture
def sample_package_json():
    """package.json for a small project with one dev dependency."""
    return {
        "name": "demo-app",
        "version": "1.0.0",
        "dependencies": {
            "app-kit": "^1.0.0",
            "lib-x": "^6.6.1",
            "tool-y": "^4.0.0",
        },
        "devDependencies": {
            "test-runner": "^2.0.0",
        },
    }


@pytest.fixture
def sample_packages():
    """``packages`` map of a v3 lockfile matching sample_package_json."""
    return {
        "": {
            "name": "demo-app",
            "version": "1.0.0",
            "dependencies": {"app-kit": "^1.0.0", "lib-x": "^6.6.1", "tool-y": "^4.0.0"},
            "devDependencies": {"test-runner": "^2.0.0"},
        },
        "node_modules/app-kit": {
            "version": "1.2.0",
            "dependencies": {"qs": "^6.5.0", "tool-y": "~4.12.0"},
        },
        "node_modules/app-kit/node_modules/tool-y": {"version": "4.12.0"},
        "node_modules/lib-x": {"version": "6.6.1"},
        "node_modules/minimist": {"version": "2.9.0", "dev": True},
        "node_modules/qs": {"version": "6.6.1"},
        "node_modules/test-runner": {
            "version": "2.1.0",
            "dev": True,
            "dependencies": {"minimist": "^2.0.0"},
        },
        "node_modules/tool-y": {"version": "4.15.2"},
    }


@pytest.fixture
def sample_lockfile(sample_packages):
    return {
        "name": "demo-app",
        "version": "1.0.0",
        "lockfileVersion": 3,
        "requires": True,
        "packages": sample_packages,
    }


@pytest.fixture
def sample_advisories():
    """Advisory records covering the negative match, conflict, transitive and intersection cases."""
    return [
        {
            "id": "ADV-LIBX",
            "package": "lib-x",
            "severity": "high",
            "affected": "<6.5.4",
            "patched": ">=6.5.4",
        },
        {
            "id": "ADV-TOOLY",
            "package": "tool-y",
            "severity": "critical",
            "affected": "<=5.2.0",
            "patched": ">=5.2.3",
        },
        {
            "id": "ADV-QS",
            "package": "qs",
            "severity": "moderate",
            "affected": "6.6.1",
            "patched": ">=6.5.4,<7.0.0",
        },
        {
            "id": "ADV-MM-1",
            "package": "minimist",
            "severity": "high",
            "affected": "<3.0.0",
            "patched": ">=3.0.0",
        },
        {
            "id": "ADV-MM-2",
            "package": "minimist",
            "severity": "low",
            "affected": ">=2.0.0 <2.9.5",
            "patched": ">=2.8.0,<4.0.0",
        },
    ]


@pytest.fixture
def build_graph():
    """Build a graph from package.json and lockfile ``packages`` dicts."""

    def _build(package_json: dict, packages: dict, include_dev: bool = True):
        manifest = parse_package_json(json.dumps(package_json), include_dev=include_dev)
        lockfile = parse_lockfile(json.dumps({"lockfileVersion": 3, "packages": packages}))
        return load_graph(manifest, lockfile)

    return _build


@pytest.fixture
def sample_graph(build_graph, sample_package_json, sample_packages):
    return build_graph(sample_package_json, sample_packages)


@pytest.fixture
def make_advisory():
    """Factory for Advisory objects from short-form fields."""

    def _make(advisory_id: str, package: str, affected: str, patched: str | None = None, severity: str = "moderate"):
        record = {"id": advisory_id, "package": package, "affected": affected, "severity": severity}
        if patched is not None:
            record["patched"] = patched
        return parse_advisory(record)

    return _make


@pytest.fixture
def project_dir(tmp_path, sample_package_json, sample_lockfile, sample_advisories):
    """A project directory with package.json, package-lock.json and an advisory database."""
    (tmp_path / "package.json").write_text(json.dumps(sample_package_json, indent=2))
    (tmp_path / "package-lock.json").write_text(json.dumps(sample_lockfile, indent=2))
    (tmp_path / "advisories.json").write_text(json.dumps(sample_advisories, indent=2))
    return tmp_path
