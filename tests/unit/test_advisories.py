"""Tests for advisory parsing and sources."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from semantic_version import Version

from core.advisories import (
    JsonFileAdvisorySource,
    OsvAdvisorySource,
    StaticAdvisorySource,
    derive_patched,
    parse_advisory,
)
from core.errors import InvalidAdvisoryDataError, LookupFailure, MalformedInputError
from core.models import Severity
from core.ranges import parse_range


class TestParseAdvisory:
    """Test advisory record parsing."""

    def test_short_form(self):
        """Should read id, package, ranges and severity."""
        advisory = parse_advisory(
            {"id": "ADV-1", "package": "qs", "affected": "<6.5.4", "patched": ">=6.5.4", "severity": "high"}
        )
        assert advisory.package_name == "qs"
        assert advisory.severity is Severity.HIGH
        assert advisory.affects(Version("6.5.3"))
        assert not advisory.affects(Version("6.6.1"))
        assert advisory.has_fix

    def test_npm_audit_form(self):
        """Should read npm audit field names and derive the patched range."""
        advisory = parse_advisory(
            {
                "id": 1179,
                "module_name": "minimist",
                "vulnerable_versions": ">=1.0.0 <1.2.6",
                "severity": "medium",
                "title": "Prototype Pollution",
                "url": "https://github.com/advisories/GHSA-xvch-5gv4-984h",
            }
        )
        assert advisory.id == "1179"
        assert advisory.severity is Severity.MODERATE
        assert advisory.patched == parse_range(">=1.2.6")
        assert advisory.title == "Prototype Pollution"

    def test_no_fix(self):
        """Should accept npm's marker for advisories without a fix."""
        advisory = parse_advisory({"id": "ADV-2", "package": "x", "affected": "*", "patched": "<0.0.0"})
        assert not advisory.has_fix

    @pytest.mark.parametrize(
        "record,message",
        [
            ({"package": "x", "affected": "*"}, "no id"),
            ({"id": "A", "affected": "*"}, "names no package"),
            ({"id": "A", "package": "x"}, "no affected range"),
            ({"id": "A", "package": "x", "affected": ">="}, "affected"),
            ({"id": "A", "package": "x", "affected": "*", "patched": 5}, "patched"),
            ({"id": "A", "package": "x", "affected": "*", "severity": "urgent"}, "severity"),
        ],
    )
    def test_malformed_records(self, record, message):
        """Should raise InvalidAdvisoryDataError naming the problem."""
        with pytest.raises(InvalidAdvisoryDataError, match=message):
            parse_advisory(record)

    def test_derive_patched_ignores_older_versions(self):
        """Should not count versions before the vulnerability as fixes."""
        patched = derive_patched(parse_range(">=1.0.0 <1.2.3 || >=2.0.0 <2.1.1"))
        assert patched == parse_range(">=1.2.3 <2.0.0 || >=2.1.1")
        assert not patched.contains(Version("0.9.0"))


class TestStaticSources:
    """Test in-memory and file-backed sources."""

    @pytest.mark.asyncio
    async def test_static_lookup(self, sample_advisories):
        """Should return advisories by package name."""
        source = StaticAdvisorySource.from_records(sample_advisories)

        minimist = await source.lookup("minimist")
        assert [a.id for a in minimist] == ["ADV-MM-1", "ADV-MM-2"]
        assert await source.lookup("left-pad") == []

    @pytest.mark.asyncio
    async def test_malformed_records_skipped(self, caplog):
        """Should skip and log malformed records."""
        source = StaticAdvisorySource.from_records(
            [
                {"id": "GOOD", "package": "a", "affected": "<1.0.0"},
                {"id": "BAD", "package": "a", "affected": ">="},
            ]
        )
        assert [a.id for a in await source.lookup("a")] == ["GOOD"]
        assert "BAD" in caplog.text

    @pytest.mark.asyncio
    async def test_json_file_layouts(self, tmp_path):
        """Should read list, wrapped and npm bulk layouts."""
        record = {"id": "A-1", "package": "a", "affected": "<1.0.0"}
        bulk = {"a": [{"id": "A-1", "vulnerable_versions": "<1.0.0", "severity": "high"}]}

        for index, data in enumerate([[record], {"advisories": [record]}, bulk]):
            path = tmp_path / f"db{index}.json"
            path.write_text(json.dumps(data))
            source = JsonFileAdvisorySource(path)
            assert [a.id for a in await source.lookup("a")] == ["A-1"]

    def test_json_file_missing(self, tmp_path):
        """Should report an unreadable database as malformed input."""
        with pytest.raises(MalformedInputError, match="cannot read"):
            JsonFileAdvisorySource(tmp_path / "missing.json")


class TestOsvSource:
    """Test the OSV.dev source."""

    OSV_RECORD = {
        "id": "GHSA-hrpp-h998-j3pp",
        "summary": "qs vulnerable to Prototype Pollution",
        "database_specific": {"severity": "HIGH"},
        "references": [{"type": "ADVISORY", "url": "https://nvd.nist.gov/vuln/detail/CVE-2022-24999"}],
        "affected": [
            {
                "package": {"ecosystem": "npm", "name": "qs"},
                "ranges": [
                    {
                        "type": "SEMVER",
                        "events": [{"introduced": "6.5.0"}, {"fixed": "6.5.3"}],
                    },
                    {
                        "type": "SEMVER",
                        "events": [{"introduced": "6.6.0"}, {"fixed": "6.6.1"}],
                    },
                ],
            },
            {"package": {"ecosystem": "PyPI", "name": "qs"}, "ranges": []},
        ],
    }

    @pytest.mark.asyncio
    async def test_convert_osv_record(self):
        """Should turn OSV events into affected and patched ranges."""
        source = OsvAdvisorySource()

        with patch.object(source, "_fetch_vulns", new=AsyncMock(return_value=[self.OSV_RECORD])):
            advisories = await source.lookup("qs")

        assert len(advisories) == 1
        advisory = advisories[0]
        assert advisory.severity is Severity.HIGH
        assert advisory.affected == parse_range(">=6.5.0 <6.5.3 || >=6.6.0 <6.6.1")
        assert advisory.patched.contains(Version("6.5.3"))
        assert advisory.patched.contains(Version("6.6.1"))
        assert not advisory.patched.contains(Version("6.6.0"))
        assert advisory.url.endswith("CVE-2022-24999")

    @pytest.mark.asyncio
    async def test_open_ended_range(self):
        """Should treat a range without a fixed event as unfixed."""
        record = {
            "id": "GHSA-open",
            "affected": [
                {
                    "package": {"ecosystem": "npm", "name": "x"},
                    "ranges": [{"type": "SEMVER", "events": [{"introduced": "0"}]}],
                }
            ],
        }
        source = OsvAdvisorySource()
        with patch.object(source, "_fetch_vulns", new=AsyncMock(return_value=[record])):
            (advisory,) = await source.lookup("x")
        assert not advisory.has_fix

    @pytest.mark.asyncio
    async def test_http_query_and_pagination(self):
        """Should POST the package query and follow page tokens."""
        pages = [
            {"vulns": [self.OSV_RECORD], "next_page_token": "t1"},
            {"vulns": []},
        ]
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json=pages[len(requests) - 1])

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        with patch("core.advisories.httpx.AsyncClient", lambda **kw: real_client(transport=transport, **kw)):
            advisories = await OsvAdvisorySource(base_url="https://osv.test").lookup("qs")

        assert [a.id for a in advisories] == ["GHSA-hrpp-h998-j3pp"]
        assert requests[0] == {"package": {"name": "qs", "ecosystem": "npm"}}
        assert requests[1]["page_token"] == "t1"

    @pytest.mark.asyncio
    async def test_http_error_is_lookup_failure(self):
        """Should wrap server errors in LookupFailure."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        real_client = httpx.AsyncClient

        with patch("core.advisories.httpx.AsyncClient", lambda **kw: real_client(transport=transport, **kw)):
            with pytest.raises(LookupFailure, match="qs"):
                await OsvAdvisorySource(base_url="https://osv.test").lookup("qs")
