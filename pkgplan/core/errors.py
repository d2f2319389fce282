"""Error kinds raised by planning and execution.

Every terminal failure carries enough context (package name, relation,
path) to render a message without re-deriving it. Planning errors also
carry the derived report so the caller can show why.
"""

from typing import List, Optional, Sequence


class PlanError(Exception):
    """Base class for planning and execution failures."""

    def __init__(self, message: str, package: Optional[str] = None,
                 detail: Optional[str] = None, report=None):
        self.package = package
        self.detail = detail
        self.report = report
        super().__init__(message)


# =============================================================================
# Planning
# =============================================================================

class AmbiguousVirtualPackage(PlanError):
    """A virtual package has several providers and none was chosen."""

    def __init__(self, package: str, providers: Sequence[str], report=None):
        self.providers = list(providers)
        super().__init__(
            f"Package {package} is a virtual package provided by: "
            f"{', '.join(self.providers)}. You should explicitly select one to install.",
            package=package, report=report
        )


class NoInstallationCandidate(PlanError):
    """Nothing installable for a requested name (or requested version)."""

    def __init__(self, package: str, replaced_by: Sequence[str] = (),
                 version: Optional[str] = None, report=None):
        self.replaced_by = list(replaced_by)
        self.version = version
        if version:
            message = f"Version '{version}' for '{package}' was not found"
        else:
            message = f"Package {package} has no installation candidate"
        if self.replaced_by:
            message += f" (replaced by: {', '.join(self.replaced_by)})"
        super().__init__(message, package=package, report=report)


class PackageNotInstalled(PlanError):
    """Removal of a package that is not installed, in strict mode."""

    def __init__(self, package: str, report=None):
        super().__init__(f"Package {package} is not installed, so not removed",
                         package=package, report=report)


class UnresolvableDependencies(PlanError):
    """Broken count is non-zero after resolution."""

    def __init__(self, broken: Sequence[str], problems: Sequence[str] = (), report=None):
        self.broken = list(broken)
        self.problems = list(problems)
        super().__init__(
            f"Unmet dependencies: {len(self.broken)} broken package(s): "
            f"{', '.join(self.broken)}",
            package=self.broken[0] if self.broken else None,
            detail='\n'.join(self.problems) or None,
            report=report
        )


class ConfirmationRequired(PlanError):
    """The plan changes more than what was explicitly requested."""

    def __init__(self, transaction, report=None):
        self.transaction = transaction
        super().__init__("Extra changes need confirmation", report=report)


# =============================================================================
# Execution
# =============================================================================

class PreconditionFailed(PlanError):
    """Sanity gate, locking or removal-disabled failures."""


class InsufficientSpace(PlanError):
    """Not enough free space in the archive directory."""

    def __init__(self, path: str, needed: int, available: int):
        self.path = path
        self.needed = needed
        self.available = available
        super().__init__(
            f"You don't have enough free space in {path} "
            f"(need {needed} bytes, {available} available)",
            detail=path
        )


class UntrustedArtifacts(PlanError):
    """Some artifacts cannot be authenticated."""

    def __init__(self, packages: Sequence[str]):
        self.packages = list(packages)
        super().__init__(
            "The following packages cannot be authenticated: " + ' '.join(self.packages),
            package=self.packages[0] if self.packages else None
        )


class TransientFetchFailure(PlanError):
    """A fetch failure expected to succeed on retry."""


class HardFetchFailure(PlanError):
    """A fetch failure that will not go away by retrying."""

    def __init__(self, message: str, failures: Optional[List[str]] = None,
                 package: Optional[str] = None):
        self.failures = list(failures or [])
        super().__init__(message, package=package, detail='\n'.join(self.failures) or None)


class OrderingError(PlanError):
    """The apply order could not be computed."""


class ApplyFailed(PlanError):
    """The apply engine failed; the transaction is Failed."""


class ApplyIncomplete(ApplyFailed):
    """The apply engine stopped early and recovery did not finish the job."""

    def __init__(self, message: str, remaining: Sequence[str] = ()):
        self.remaining = list(remaining)
        super().__init__(message, package=self.remaining[0] if self.remaining else None)
