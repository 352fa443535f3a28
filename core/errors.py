"""Error taxonomy for DepMend."""


class DepMendError(Exception):
    """Base class for every error DepMend raises on purpose."""


class MalformedInputError(DepMendError):
    """A manifest or lockfile cannot be turned into a resolved graph.

    Fatal: the run aborts before any advisory lookup happens.
    """

    def __init__(self, message: str, source: str | None = None, location: str | None = None):
        self.source = source
        self.location = location
        prefix = ""
        if source:
            prefix = source
            if location is not None:
                prefix += f" [{location or '<root>'}]"
            prefix += ": "
        super().__init__(f"{prefix}{message}")


class InvalidAdvisoryDataError(DepMendError):
    """An advisory carries a version range or severity that cannot be parsed."""

    def __init__(self, message: str, advisory_id: str | None = None):
        self.advisory_id = advisory_id
        if advisory_id:
            message = f"advisory {advisory_id}: {message}"
        super().__init__(message)


class LookupFailure(DepMendError):
    """The advisory source failed to answer for a package."""

    def __init__(self, package_name: str, cause: Exception | str):
        self.package_name = package_name
        self.cause = cause
        super().__init__(f"Advisory lookup failed for {package_name}: {cause}")


class RunCancelledError(DepMendError):
    """The run was interrupted before a plan could be produced."""

    def __init__(self, completed_packages: list[str] | None = None):
        self.completed_packages = completed_packages or []
        super().__init__(
            f"Run cancelled after {len(self.completed_packages)} advisory lookup(s); no plan produced"
        )
