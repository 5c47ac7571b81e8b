"""Failure classification for RDE operations.

Every failure the engine reports is an :class:`RDEError` carrying a single
:class:`Failure` record.  Callers dispatch on ``failure.kind`` (a closed
:class:`ErrorKind` enum) rather than on exception subclasses, and the CLI
maps each kind to a process exit code through its :class:`ErrorCategory`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    import httpx


class ErrorCategory(str, Enum):
    """Coarse grouping of failure kinds, one per process exit code."""

    GENERAL = "general"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    DEPLOYMENT = "deployment"
    INTERNAL = "internal"
    WARNING = "warning"


class ExitCode(IntEnum):
    GENERAL = 1
    CONFIGURATION = 2
    VALIDATION = 3
    DEPLOYMENT_ERROR = 4
    INTERNAL = 5
    DEPLOYMENT_WARNING = 40


class ErrorKind(str, Enum):
    """Every failure the engine can report."""

    # Transport / protocol
    NETWORK_ERROR = "NetworkError"
    UNEXPECTED_API_ERROR = "UnexpectedApiError"
    POLLING_LIMIT_REACHED = "PollingLimitReached"

    # Terminal update outcomes
    DEPLOYMENT_FAILURE = "DeploymentFailure"
    DEPLOYMENT_WARNING = "DeploymentWarning"
    DELETE_NOT_FOUND = "DeleteNotFound"

    # Local validation
    INVALID_UPDATE_ID = "InvalidUpdateId"
    INVALID_DEPLOYMENT_TYPE = "InvalidDeploymentType"
    MISSING_PROGRAM_ID = "MissingProgramId"
    MISSING_ENVIRONMENT_ID = "MissingEnvironmentId"
    CONCURRENT_MODIFICATION = "ConcurrentModification"
    DEPLOYMENT_IN_PROGRESS = "DeploymentInProgress"

    # Configuration
    MISSING_ACCESS_TOKEN = "MissingAccessToken"
    DIFFERENT_ENVIRONMENT_TYPE = "DifferentEnvironmentType"
    PROGRAM_OR_ENVIRONMENT_NOT_FOUND = "ProgramOrEnvironmentNotFound"
    INVALID_CONFIGURATION = "InvalidConfiguration"

    # Snapshot domain
    SNAPSHOT_ALREADY_EXISTS = "SnapshotAlreadyExists"
    SNAPSHOT_NOT_FOUND = "SnapshotNotFound"
    SNAPSHOT_DELETED = "SnapshotDeleted"
    SNAPSHOT_LIMIT = "SnapshotLimit"
    SNAPSHOT_INVALID_STATE = "SnapshotInvalidState"
    SNAPSHOT_WRONG_STATE = "SnapshotWrongState"
    SNAPSHOT_CREATION_FAILED = "SnapshotCreationFailed"
    SNAPSHOT_APPLY_FAILED = "SnapshotApplyFailed"

    # Catch-alls
    UNEXPECTED_SNAPSHOT_ERROR = "UnexpectedSnapshotError"
    INTERNAL_ERROR = "InternalError"
    UNKNOWN = "Unknown"


_CATEGORY_EXIT_CODES: dict[ErrorCategory, ExitCode] = {
    ErrorCategory.GENERAL: ExitCode.GENERAL,
    ErrorCategory.CONFIGURATION: ExitCode.CONFIGURATION,
    ErrorCategory.VALIDATION: ExitCode.VALIDATION,
    ErrorCategory.DEPLOYMENT: ExitCode.DEPLOYMENT_ERROR,
    ErrorCategory.INTERNAL: ExitCode.INTERNAL,
    ErrorCategory.WARNING: ExitCode.DEPLOYMENT_WARNING,
}

KIND_CATEGORIES: dict[ErrorKind, ErrorCategory] = {
    ErrorKind.NETWORK_ERROR: ErrorCategory.INTERNAL,
    ErrorKind.UNEXPECTED_API_ERROR: ErrorCategory.INTERNAL,
    ErrorKind.POLLING_LIMIT_REACHED: ErrorCategory.INTERNAL,
    ErrorKind.DEPLOYMENT_FAILURE: ErrorCategory.DEPLOYMENT,
    ErrorKind.DEPLOYMENT_WARNING: ErrorCategory.WARNING,
    ErrorKind.DELETE_NOT_FOUND: ErrorCategory.DEPLOYMENT,
    ErrorKind.INVALID_UPDATE_ID: ErrorCategory.VALIDATION,
    ErrorKind.INVALID_DEPLOYMENT_TYPE: ErrorCategory.VALIDATION,
    ErrorKind.MISSING_PROGRAM_ID: ErrorCategory.VALIDATION,
    ErrorKind.MISSING_ENVIRONMENT_ID: ErrorCategory.VALIDATION,
    ErrorKind.CONCURRENT_MODIFICATION: ErrorCategory.VALIDATION,
    ErrorKind.DEPLOYMENT_IN_PROGRESS: ErrorCategory.VALIDATION,
    ErrorKind.MISSING_ACCESS_TOKEN: ErrorCategory.CONFIGURATION,
    ErrorKind.DIFFERENT_ENVIRONMENT_TYPE: ErrorCategory.CONFIGURATION,
    ErrorKind.PROGRAM_OR_ENVIRONMENT_NOT_FOUND: ErrorCategory.CONFIGURATION,
    ErrorKind.INVALID_CONFIGURATION: ErrorCategory.CONFIGURATION,
    ErrorKind.SNAPSHOT_ALREADY_EXISTS: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_NOT_FOUND: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_DELETED: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_LIMIT: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_INVALID_STATE: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_WRONG_STATE: ErrorCategory.VALIDATION,
    ErrorKind.SNAPSHOT_CREATION_FAILED: ErrorCategory.INTERNAL,
    ErrorKind.SNAPSHOT_APPLY_FAILED: ErrorCategory.INTERNAL,
    ErrorKind.UNEXPECTED_SNAPSHOT_ERROR: ErrorCategory.INTERNAL,
    ErrorKind.INTERNAL_ERROR: ErrorCategory.INTERNAL,
    ErrorKind.UNKNOWN: ErrorCategory.INTERNAL,
}

# printf-style templates, filled by ``fail(kind, *values)``.
_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK_ERROR: "Could not communicate with the server on %s. Please, try again later.",
    ErrorKind.UNEXPECTED_API_ERROR: (
        "There was an unexpected API error code %s with message %s. "
        "Please, try again later and if the error persists, report it."
    ),
    ErrorKind.POLLING_LIMIT_REACHED: "Gave up waiting for %s after %s attempts.",
    ErrorKind.DEPLOYMENT_FAILURE: "The update #%s failed. Please check the logs.",
    ErrorKind.DEPLOYMENT_WARNING: (
        "The update #%s was staged, analysers detected missing packages that can be fixed "
        "with another deployment on top of this one. Please check logs. If this is expected, "
        "you can ignore exit code 40."
    ),
    ErrorKind.DELETE_NOT_FOUND: "No %s with id %s found on %sthe environment.",
    ErrorKind.INVALID_UPDATE_ID: 'Invalid update ID "%s". Please use a positive update ID number as the input.',
    ErrorKind.INVALID_DEPLOYMENT_TYPE: (
        "We could not infer the deployment type. Please specify the --type option with one "
        "of the following types: %s"
    ),
    ErrorKind.MISSING_PROGRAM_ID: (
        "Program ID must be specified either as --program-id option or through RDE_PROGRAM_ID."
    ),
    ErrorKind.MISSING_ENVIRONMENT_ID: (
        "Environment ID must be specified either as --environment-id option or through RDE_ENVIRONMENT_ID."
    ),
    ErrorKind.CONCURRENT_MODIFICATION: (
        'Your RDE is waiting for the upload of a previous invocation of the "install" command. '
        'You can ignore this by using the "--force" flag.'
    ),
    ErrorKind.DEPLOYMENT_IN_PROGRESS: (
        "AEM instances are receiving a deployment and new packages are not accepted "
        "temporarily until the instances are done."
    ),
    ErrorKind.MISSING_ACCESS_TOKEN: "No access token configured. Set RDE_ACCESS_TOKEN or store one with 'rde configure'.",
    ErrorKind.DIFFERENT_ENVIRONMENT_TYPE: "The selected environment is not a Rapid Development Environment.",
    ErrorKind.PROGRAM_OR_ENVIRONMENT_NOT_FOUND: "The requested environment or program does not exist.",
    ErrorKind.INVALID_CONFIGURATION: "Invalid configuration: %s",
    ErrorKind.SNAPSHOT_ALREADY_EXISTS: "A snapshot with the given name already exists.",
    ErrorKind.SNAPSHOT_NOT_FOUND: "The snapshot does not exist.",
    ErrorKind.SNAPSHOT_DELETED: (
        "The snapshot is in deleted state, change the state to available before applying it."
    ),
    ErrorKind.SNAPSHOT_LIMIT: (
        "Reached the maximum number or diskspace of snapshots. Remove some snapshots and try again."
    ),
    ErrorKind.SNAPSHOT_INVALID_STATE: (
        "The RDE is not in a state where a snapshot can be created or applied."
    ),
    ErrorKind.SNAPSHOT_WRONG_STATE: (
        'Snapshot is in wrong state. Must be in state "REMOVED" to be able to wipe.'
    ),
    ErrorKind.SNAPSHOT_CREATION_FAILED: "Creating the snapshot %s failed on the server.",
    ErrorKind.SNAPSHOT_APPLY_FAILED: "Applying the snapshot %s failed on the server.",
    ErrorKind.UNEXPECTED_SNAPSHOT_ERROR: (
        "There was an unexpected error when running the snapshot command. "
        "Please, try again later and if the error persists, report it. Error %s"
    ),
    ErrorKind.INTERNAL_ERROR: (
        "There was an unexpected error when running the %s command. "
        "Please, try again later and if the error persists, report it. Error %s"
    ),
    ErrorKind.UNKNOWN: "An unknown error occurred (status %s). Please, try again later.",
}


@dataclass(frozen=True)
class Failure:
    """A classified failure: what went wrong, in which category, and why."""

    kind: ErrorKind
    message: str
    detail: str | None = None
    status_code: int | None = None

    @property
    def category(self) -> ErrorCategory:
        return KIND_CATEGORIES[self.kind]

    @property
    def exit_code(self) -> ExitCode:
        return _CATEGORY_EXIT_CODES[self.category]

    @property
    def is_warning(self) -> bool:
        return self.category is ErrorCategory.WARNING


class RDEError(Exception):
    """The single exception type raised by the engine."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self) -> ErrorKind:
        return self.failure.kind

    def __repr__(self) -> str:
        return f"RDEError({self.failure.kind.value!r}, {self.failure.message!r})"


def _format(kind: ErrorKind, values: tuple[object, ...]) -> str:
    template = _MESSAGES[kind]
    slots = template.count("%s")
    if slots == 0:
        return template
    filled = tuple(values[:slots])
    filled += ("",) * (slots - len(filled))
    return template % filled


def fail(
    kind: ErrorKind,
    *values: object,
    detail: str | None = None,
    status_code: int | None = None,
) -> RDEError:
    """Build an :class:`RDEError` for *kind*, filling the message template with *values*."""
    return RDEError(Failure(kind=kind, message=_format(kind, values), detail=detail, status_code=status_code))


def unexpected_api_error(response: httpx.Response) -> RDEError:
    """Classify a response whose status is outside the handled set for its call site."""
    return fail(
        ErrorKind.UNEXPECTED_API_ERROR,
        response.status_code,
        response.reason_phrase,
        status_code=response.status_code,
    )


def reraise_or_wrap(exc: BaseException, kind: ErrorKind, *values: object) -> NoReturn:
    """Re-raise an already classified error, otherwise wrap *exc* as *kind*.

    The original exception's message is appended to the template values and
    chained as ``__cause__``.
    """
    if isinstance(exc, RDEError):
        raise exc
    raise fail(kind, *values, str(exc), detail=repr(exc)) from exc
