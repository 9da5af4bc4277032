"""Local cache of Terraform template repositories.

Template sources are cloned once into ``~/.spk/templates/<folder>`` (folder
name derived from the source URL) and moved to the requested version on
every use. When updating the cached copy fails (e.g. history rewritten
upstream, or a token rotated), the cache folder is wiped and cloned again
once before giving up.

Source URLs may embed an access token; they are masked before being
logged or put into error messages.
"""

import logging
import shutil
import subprocess
from pathlib import Path

from spk.errors import ErrorParam, ErrorStatusCode, SpkError
from spk.log_sanitizer import LogSanitizer
from spk.modules.definition import SourceInformation
from spk.modules.infra_common import SPK_TEMPLATES_PATH, get_source_folder_name_from_url

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 300


def _describe(e: Exception) -> str:
    if isinstance(e, subprocess.CalledProcessError):
        return (e.stderr or e.stdout or f"git exited with {e.returncode}").strip()
    return str(e)


def _git_error(error_key: str, values: list[str], e: Exception) -> SpkError:
    return SpkError(
        ErrorStatusCode.GIT_OPS_ERR,
        ErrorParam(error_key, values),
        details=LogSanitizer.sanitize(_describe(e)),
    )


def run_git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run git, raising CalledProcessError on a non-zero exit."""
    logger.debug(f"git {LogSanitizer.sanitize(' '.join(args))}")
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        timeout=GIT_TIMEOUT,
    )


def check_remote_git_exist(source: str) -> None:
    """Raises SpkError (``infra-git-remote-not-found``) if the remote is unreachable."""
    try:
        run_git(["ls-remote", source])
    except (subprocess.SubprocessError, OSError) as e:
        raise _git_error("infra-git-remote-not-found", [LogSanitizer.safe_git_url(source)], e) from e
    logger.info(f"Remote source repo {LogSanitizer.safe_git_url(source)} exists")


def git_clone(source: str, source_path: Path) -> None:
    try:
        run_git(["clone", source, str(source_path)])
    except (subprocess.SubprocessError, OSError) as e:
        raise _git_error(
            "infra-git-clone-err", [LogSanitizer.safe_git_url(source), str(source_path)], e
        ) from e
    logger.info(f"Cloned {LogSanitizer.safe_git_url(source)} into {source_path}")


def git_checkout(source_path: Path, version: str) -> None:
    """Fetch ``version`` (tag, branch or commit) from origin and check it out detached."""
    try:
        run_git(["fetch", "--tags", "origin", version], cwd=source_path)
        run_git(["checkout", "--force", "--detach", "FETCH_HEAD"], cwd=source_path)
    except (subprocess.SubprocessError, OSError) as e:
        raise _git_error("infra-git-checkout-err", [version, str(source_path)], e) from e
    logger.info(f"Checked out {version} in {source_path}")


def retry_remote_validate(source: str, source_path: Path, version: str) -> None:
    """Wipe the cached clone, clone again and check out ``version``."""
    logger.warning(f"Removing cached templates in {source_path} and cloning again")
    shutil.rmtree(source_path, ignore_errors=True)
    git_clone(source, source_path)
    git_checkout(source_path, version)


def validate_remote_source(
    source_info: SourceInformation, templates_path: Path | None = None
) -> Path:
    """Make the template source available locally at the requested version.

    Returns:
        Path of the cached clone

    Raises:
        SpkError: GIT_OPS_ERR if the remote is unreachable or the retry fails
    """
    source = source_info.source
    templates_path = templates_path or SPK_TEMPLATES_PATH
    source_path = templates_path / get_source_folder_name_from_url(source)
    safe_source = LogSanitizer.safe_git_url(source)
    logger.info(f"Checking if source {safe_source} is stored locally in {source_path}")

    templates_path.mkdir(parents=True, exist_ok=True)
    check_remote_git_exist(source)

    try:
        if (source_path / ".git").is_dir():
            logger.info(f"Source template folder found, updating to {source_info.version}")
        else:
            logger.info(f"Source template folder not found, cloning {safe_source}")
            shutil.rmtree(source_path, ignore_errors=True)
            git_clone(source, source_path)
        git_checkout(source_path, source_info.version)
    except SpkError as e:
        logger.warning(f"Updating {source_path} failed: {e.message}")
        retry_remote_validate(source, source_path, source_info.version)

    return source_path


__all__ = [
    "check_remote_git_exist",
    "git_checkout",
    "git_clone",
    "retry_remote_validate",
    "run_git",
    "validate_remote_source",
]
