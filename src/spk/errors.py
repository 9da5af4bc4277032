"""Error taxonomy for spk commands.

Every failure surfaced to the user carries a numeric status code and a
stable error key (e.g. ``introspect-get-cmd-get-deployments-err``). Errors
chain: a command-level error wraps the lower-level error that caused it,
and ``log_error`` prints the whole chain indented by depth.

Public API:
    ErrorStatusCode: Numeric error categories
    SpkError: Chained, keyed exception
    build_error: Construct an SpkError wrapping an optional cause
    get_error_message: Resolve an error key (with values) to text
    log_error: Log an error chain and return the logged text
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum

logger = logging.getLogger(__name__)


class ErrorStatusCode(IntEnum):
    """Error categories. Existing numbers must never change."""

    CMD_EXE_ERR = 1000
    VALIDATION_ERR = 1001
    EXE_FLOW_ERR = 1002
    ENV_SETTING_ERR = 1010
    FILE_IO_ERR = 1011
    INCORRECT_DEFINITION = 1012
    GIT_OPS_ERR = 1100


# {0}, {1}, ... are replaced with ErrorParam values
ERROR_MESSAGES: dict[str, str] = {
    "config-file-not-found": "Config file {0} was not found. Run `spk init` first.",
    "config-file-invalid": "Config file {0} could not be parsed.",
    "introspect-get-cmd-missing-values": (
        "Introspection storage is not configured. Run `spk init` and "
        "`spk deployment onboard` to configure spk."
    ),
    "introspect-get-cmd-invalid-top": "Value for top option has to be a positive number, got {0}.",
    "introspect-get-cmd-get-deployments-err": "Could not get deployments.",
    "introspect-get-cmd-sync-status-err": "Could not get cluster sync status for {0}.",
    "introspect-get-cmd-failed": "Get deployments command was not successfully executed.",
    "introspect-create-cmd-missing-values": (
        "Access key, storage account name, partition key and/or table name were not provided."
    ),
    "introspect-create-cmd-p1-missing-values": (
        "p1 requires image tag, commit id and service name to be provided."
    ),
    "introspect-create-cmd-p2-missing-values": (
        "p2 requires hld commit id, environment and image tag to be provided."
    ),
    "introspect-create-cmd-no-ops": "No action could be performed for the given arguments.",
    "introspect-create-cmd-failed": "Create deployment command was not successfully executed.",
    "introspect-create-cmd-no-manifest-build": "No manifest generation found to update manifest commit {0}.",
    "introspect-onboard-cmd-missing-values": "Required values are missing: {0}.",
    "introspect-onboard-cmd-invalid-storage-name": (
        "Storage account name {0} must be 3-24 lowercase letters and numbers."
    ),
    "introspect-onboard-cmd-invalid-table-name": (
        "Storage table name {0} must start with a letter and be 3-63 alphanumeric characters."
    ),
    "introspect-onboard-cmd-location-missing": (
        "Storage account {0} does not exist and --storage-location was not provided."
    ),
    "introspect-onboard-cmd-no-key": "Storage account {0} in resource group {1} has no access keys.",
    "introspect-onboard-cmd-failed": "Onboard command was not successfully executed.",
    "infra-defn-yaml-not-found": "definition.yaml was not found in {0} or its parent {1}.",
    "infra-defn-yaml-invalid": (
        "Definition is missing required source fields. source: {0}, template: {1}, version: {2}."
    ),
    "infra-defn-yaml-parse-err": "Unable to parse {0}.",
    "infra-err-locate-tf-env": "Unable to locate Terraform environment directory {0}.",
    "infra-err-tf-path-not-found": "{0} was not found in {1}.",
    "infra-unable-read-var-file": "Unable to read variable file {0}.",
    "infra-err-create-scaffold": "Unable to create scaffold.",
    "infra-scaffold-cmd-src-missing": (
        "Value for source is required because the infrastructure repository and "
        "access token are not configured."
    ),
    "infra-scaffold-cmd-values-missing": "Values for name, version and/or template are missing.",
    "infra-scaffold-cmd-failed": "Scaffold command was not successfully executed.",
    "infra-git-clone-err": "Unable to clone {0} into {1}.",
    "infra-git-checkout-err": "Unable to checkout {0} in {1}.",
    "infra-git-remote-not-found": "Remote repository {0} does not exist or is not accessible.",
    "infra-generate-cmd-failed": "Generate command was not successfully executed.",
    "docs-manifest-read-err": "Unable to read command manifest {0}.",
    "docs-diff-duplicate-release": "Manifests {0} and {1} name the same release {2}.",
    "docs-cmd-failed": "Docs command was not successfully executed.",
}


def get_error_message(error_key: str, values: list[str] | None = None) -> str:
    """Resolve an error key to ``"<key>: <message>"``.

    Unknown keys are returned as-is so ad-hoc messages still read well.
    """
    if error_key not in ERROR_MESSAGES:
        return error_key

    message = ERROR_MESSAGES[error_key]
    for i, value in enumerate(values or []):
        message = message.replace("{" + str(i) + "}", str(value))
    return f"{error_key}: {message}"


@dataclass
class ErrorParam:
    """An error key with substitution values."""

    error_key: str
    values: list[str] = field(default_factory=list)


class SpkError(Exception):
    """Keyed spk error with an optional parent in the chain."""

    def __init__(
        self,
        code: ErrorStatusCode,
        error: str | ErrorParam,
        parent: "SpkError | None" = None,
        details: str | None = None,
    ):
        if isinstance(error, ErrorParam):
            self.error_key = error.error_key
            message = get_error_message(error.error_key, error.values)
        else:
            self.error_key = error
            message = get_error_message(error)
        super().__init__(message)
        self.code = code
        self.message = message
        self.parent = parent
        self.details = details

    def messages(self, padding: str = "") -> list[str]:
        """Return formatted messages for this error and its parents."""
        text = f"{padding}code: {int(self.code)}\n{padding}message: {self.message}"
        if self.details:
            text += f"\n{padding}details: {self.details}"

        results = [text]
        if self.parent:
            results.extend(self.parent.messages(padding + "  "))
        return results


def build_error(
    code: ErrorStatusCode,
    error: str | ErrorParam,
    cause: BaseException | None = None,
) -> SpkError:
    """Build an SpkError, chaining ``cause`` as parent or details.

    Args:
        code: Error status code
        error: Error key, or ErrorParam for keys with placeholders
        cause: Underlying exception (optional)

    Returns:
        SpkError ready to raise
    """
    if isinstance(cause, SpkError):
        return SpkError(code, error, parent=cause)
    if cause is not None:
        return SpkError(code, error, details=str(cause))
    return SpkError(code, error)


def log_error(err: BaseException) -> str:
    """Log an error (with its chain) and return the logged text."""
    if isinstance(err, SpkError):
        msg = "\n" + "\n".join(err.messages())
    else:
        msg = str(err)
    logger.error(msg)
    return msg


__all__ = [
    "ERROR_MESSAGES",
    "ErrorParam",
    "ErrorStatusCode",
    "SpkError",
    "build_error",
    "get_error_message",
    "log_error",
]
