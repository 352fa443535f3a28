"""Advisory sources: where known vulnerabilities come from."""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

import httpx

from .errors import InvalidAdvisoryDataError, LookupFailure, MalformedInputError
from .models import Advisory, Severity
from .ranges import Interval, VersionRange, parse_range, parse_version

logger = logging.getLogger(__name__)

OSV_URL = "https://api.osv.dev"


def derive_patched(affected: VersionRange) -> VersionRange:
    """Versions outside ``affected`` from its first vulnerable version upward.

    Versions released before the vulnerability was introduced are not
    treated as fixes.
    """
    patched = affected.complement()
    lowest = affected.lowest_bound()
    if lowest is not None:
        patched = patched.intersect(VersionRange((Interval(lowest, True, None),)))
    return patched


def _range_field(data: dict, keys: tuple[str, ...], advisory_id: str) -> VersionRange | None:
    for key in keys:
        if key in data and data[key] is not None:
            value = data[key]
            if not isinstance(value, str):
                raise InvalidAdvisoryDataError(f"'{key}' must be a range string", advisory_id)
            try:
                return parse_range(value)
            except ValueError as e:
                raise InvalidAdvisoryDataError(f"'{key}': {e}", advisory_id) from e
    return None


def parse_advisory(data: dict, package_name: str | None = None) -> Advisory:
    """Build an Advisory from a JSON record.

    Understands npm audit / GitHub advisory style records
    (``module_name``, ``vulnerable_versions``, ``patched_versions``) as well as
    the short form (``package``, ``affected``, ``patched``). A missing patched
    range is derived from the affected range.

    Raises:
        InvalidAdvisoryDataError: if a range or severity cannot be parsed
    """
    if not isinstance(data, dict):
        raise InvalidAdvisoryDataError("advisory record must be an object")

    advisory_id = str(data.get("id") or data.get("github_advisory_id") or data.get("url") or "")
    if not advisory_id:
        raise InvalidAdvisoryDataError("advisory has no id")

    name = data.get("package") or data.get("module_name") or data.get("name") or package_name
    if not name:
        raise InvalidAdvisoryDataError("advisory names no package", advisory_id)

    affected = _range_field(data, ("affected", "vulnerable_versions", "range"), advisory_id)
    if affected is None:
        raise InvalidAdvisoryDataError("advisory has no affected range", advisory_id)
    patched = _range_field(data, ("patched", "patched_versions"), advisory_id)
    if patched is None:
        patched = derive_patched(affected)

    try:
        severity = Severity.parse(data.get("severity") or "moderate")
    except ValueError as e:
        raise InvalidAdvisoryDataError(f"unknown severity {data.get('severity')!r}", advisory_id) from e

    return Advisory(
        id=advisory_id,
        package_name=str(name),
        affected=affected,
        patched=patched,
        severity=severity,
        title=str(data.get("title") or data.get("summary") or ""),
        url=str(data.get("url") or ""),
    )


def parse_records(records: Iterable[dict]) -> list[Advisory]:
    """Parse raw records, skipping (and logging) malformed ones."""
    advisories = []
    for record in records:
        try:
            advisories.append(parse_advisory(record))
        except InvalidAdvisoryDataError as e:
            logger.warning("Skipping advisory: %s", e)
    return advisories


class AdvisorySource(ABC):
    """Supplies the advisories known for a package name.

    Answers must not change during a run; callers may cache them.
    """

    name = "advisories"

    @abstractmethod
    async def lookup(self, package_name: str) -> list[Advisory]:
        """Return every advisory recorded for ``package_name``."""


class StaticAdvisorySource(AdvisorySource):
    """Advisories held in memory."""

    name = "static"

    def __init__(self, advisories: Iterable[Advisory] = ()):
        self._by_package: dict[str, list[Advisory]] = {}
        for advisory in advisories:
            self._by_package.setdefault(advisory.package_name, []).append(advisory)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "StaticAdvisorySource":
        return cls(parse_records(records))

    async def lookup(self, package_name: str) -> list[Advisory]:
        return list(self._by_package.get(package_name, []))


class JsonFileAdvisorySource(StaticAdvisorySource):
    """Advisories read from a local JSON database.

    Accepted layouts: a list of records, ``{"advisories": [...]}``, or the npm
    bulk-advisory shape ``{"package-name": [record, ...]}``.
    """

    name = "file"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        try:
            data = json.loads(self.path.read_text())
        except OSError as e:
            raise MalformedInputError(f"cannot read advisory database: {e}", str(self.path)) from e
        except json.JSONDecodeError as e:
            raise MalformedInputError(f"invalid JSON: {e.msg} at line {e.lineno}", str(self.path)) from e

        records = []
        if isinstance(data, list):
            records = data
        elif isinstance(data, dict) and isinstance(data.get("advisories"), list):
            records = data["advisories"]
        elif isinstance(data, dict):
            for package_name, items in data.items():
                if not isinstance(items, list):
                    raise MalformedInputError(f"advisories for {package_name!r} must be a list", str(self.path))
                records.extend({**item, "package": package_name} for item in items if isinstance(item, dict))
        else:
            raise MalformedInputError("advisory database must be a list or an object", str(self.path))

        super().__init__(parse_records(records))
        logger.debug("Loaded %d advisory package(s) from %s", len(self._by_package), self.path)


class OsvAdvisorySource(AdvisorySource):
    """Advisories queried from the OSV.dev API for the npm ecosystem."""

    name = "osv"

    def __init__(self, base_url: str = OSV_URL, timeout: float = 30.0):
        """Initialize the OSV source.

        Args:
            base_url: OSV API root
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def lookup(self, package_name: str) -> list[Advisory]:
        vulns = await self._fetch_vulns(package_name)
        advisories = []
        for vuln in vulns:
            try:
                advisory = self._to_advisory(vuln, package_name)
            except InvalidAdvisoryDataError as e:
                logger.warning("Skipping advisory: %s", e)
                continue
            if advisory is not None:
                advisories.append(advisory)
        return advisories

    async def _fetch_vulns(self, package_name: str) -> list[dict]:
        """Fetch every OSV record for a package, following pagination."""
        url = f"{self.base_url}/v1/query"
        query = {"package": {"name": package_name, "ecosystem": "npm"}}
        vulns: list[dict] = []

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                while True:
                    response = await client.post(url, json=query)
                    if response.status_code == 404:
                        return []
                    response.raise_for_status()
                    payload = response.json()
                    vulns.extend(payload.get("vulns") or [])
                    token = payload.get("next_page_token")
                    if not token:
                        return vulns
                    query = {**query, "page_token": token}
        except httpx.TimeoutException as e:
            raise LookupFailure(package_name, f"timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise LookupFailure(package_name, e) from e
        except ValueError as e:
            raise LookupFailure(package_name, f"invalid JSON response: {e}") from e

    @staticmethod
    def _severity(vuln: dict) -> Severity:
        label = (vuln.get("database_specific") or {}).get("severity")
        if label:
            try:
                return Severity.parse(label)
            except ValueError:
                pass
        return Severity.MODERATE

    @staticmethod
    def _affected_range(entry: dict, advisory_id: str) -> VersionRange:
        intervals = []
        try:
            for osv_range in entry.get("ranges") or []:
                if osv_range.get("type") not in ("SEMVER", "ECOSYSTEM"):
                    continue
                lower, is_open = None, False
                for event in osv_range.get("events") or []:
                    if "introduced" in event:
                        lower = None if event["introduced"] == "0" else parse_version(event["introduced"])
                        is_open = True
                    elif "fixed" in event and is_open:
                        intervals.append(Interval(lower, True, parse_version(event["fixed"]), False))
                        is_open = False
                    elif "last_affected" in event and is_open:
                        intervals.append(Interval(lower, True, parse_version(event["last_affected"]), True))
                        is_open = False
                if is_open:
                    intervals.append(Interval(lower, True, None))
            explicit = [VersionRange.exact(parse_version(v)) for v in entry.get("versions") or []]
        except ValueError as e:
            raise InvalidAdvisoryDataError(str(e), advisory_id) from e

        affected = VersionRange(tuple(intervals))
        for exact in explicit:
            affected = affected.union(exact)
        return affected

    def _to_advisory(self, vuln: dict, package_name: str) -> Advisory | None:
        advisory_id = vuln.get("id")
        if not advisory_id:
            raise InvalidAdvisoryDataError("OSV record has no id")

        affected = VersionRange.empty()
        for entry in vuln.get("affected") or []:
            package = entry.get("package") or {}
            if package.get("ecosystem") != "npm" or package.get("name") != package_name:
                continue
            affected = affected.union(self._affected_range(entry, advisory_id))
        if not affected.intervals:
            return None

        references = vuln.get("references") or []
        url = next((ref.get("url") for ref in references if ref.get("type") == "ADVISORY"), "")
        return Advisory(
            id=advisory_id,
            package_name=package_name,
            affected=affected,
            patched=derive_patched(affected),
            severity=self._severity(vuln),
            title=vuln.get("summary") or "",
            url=url or "",
        )
