"""Manifest repository sync state.

A GitOps agent (Flux) marks the manifest commit it last applied to a
cluster with an annotated tag (e.g. ``flux-sync`` or ``flux-<cluster>``).
Reading those tags tells us which manifest commit each cluster runs.

Two hosts are supported, selected by the repository URL:
- GitHub (``github.com/<owner>/<repo>``)
- Azure DevOps Repos (``dev.azure.com/<org>/<project>/_git/<repo>``)

Public API:
    ClusterSyncStatus: One sync tag
    GitHubRepository, AzureDevOpsRepository: Providers with
        ``get_manifest_sync_state()``
    repository_from_url: Provider selection by URL shape
    RepositoryError: Fetch failed
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import urlparse

import requests

from spk.log_sanitizer import LogSanitizer
from spk.pipelines import parse_timestamp
from spk.retry_handler import raise_for_transient_status, retry_with_exponential_backoff

logger = logging.getLogger(__name__)

TAG_REF_PREFIX = "refs/tags/"
SYNC_TAG_PREFIX = "flux-"


def is_sync_tag(name: str) -> bool:
    return name.startswith(SYNC_TAG_PREFIX)


class RepositoryError(Exception):
    """Failed to read tags from the manifest repository."""

    pass


@dataclass
class ClusterSyncStatus:
    """A sync tag on the manifest repository."""

    name: str
    commit: str
    date: datetime | None
    tagger: str = ""
    message: str = ""

    def matches_commit(self, commit_id: str | None) -> bool:
        """True when ``commit_id`` and the tagged commit agree on their common prefix."""
        if not commit_id or not self.commit:
            return False
        commit_id = commit_id.lower()
        tagged = self.commit.lower()
        return tagged.startswith(commit_id) or commit_id.startswith(tagged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "commit": self.commit,
            "date": self.date.isoformat() if self.date else None,
            "tagger": self.tagger,
            "message": self.message,
        }


class ManifestRepository(Protocol):
    """Anything that can report manifest sync tags."""

    def get_manifest_sync_state(self) -> list[ClusterSyncStatus]: ...


class _RestRepository:
    API_TIMEOUT = 30

    def __init__(self, access_token: str | None = None, session: requests.Session | None = None):
        self.session = session or requests.Session()
        self.access_token = access_token

    def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        try:
            response = self._request(url, params)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise RepositoryError(
                f"Request to {LogSanitizer.safe_git_url(url)} failed: {e}"
            ) from e

    @retry_with_exponential_backoff(max_attempts=3)
    def _request(self, url: str, params: dict[str, str] | None) -> requests.Response:
        response = self.session.get(url, params=params, timeout=self.API_TIMEOUT)
        raise_for_transient_status(response)
        return response


class GitHubRepository(_RestRepository):
    """Sync tags from a GitHub repository."""

    API_BASE = "https://api.github.com"

    def __init__(
        self,
        owner: str,
        name: str,
        access_token: str | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(access_token, session)
        self.owner = owner
        self.name = name
        if access_token:
            self.session.headers["Authorization"] = f"token {access_token}"

    def get_manifest_sync_state(self) -> list[ClusterSyncStatus]:
        """Resolve every annotated ``flux-`` tag to its commit, tagger and date."""
        refs_url = f"{self.API_BASE}/repos/{self.owner}/{self.name}/git/refs/tags"
        refs = self._get_json(refs_url)

        statuses = []
        for ref in refs or []:
            obj = ref.get("object") or {}
            # Lightweight tags point at commits and carry no sync metadata
            if obj.get("type") != "tag":
                continue
            if not is_sync_tag(ref.get("ref", "").replace(TAG_REF_PREFIX, "")):
                continue
            tag = self._get_json(obj["url"])
            tagger = tag.get("tagger") or {}
            statuses.append(
                ClusterSyncStatus(
                    name=tag.get("tag") or ref.get("ref", "").replace(TAG_REF_PREFIX, ""),
                    commit=(tag.get("object") or {}).get("sha", ""),
                    date=parse_timestamp(tagger.get("date")),
                    tagger=tagger.get("name", ""),
                    message=(tag.get("message") or "").strip(),
                )
            )
        return statuses


class AzureDevOpsRepository(_RestRepository):
    """Sync tags from an Azure DevOps Repos repository."""

    API_BASE = "https://dev.azure.com/{org}/{project}/_apis/git/repositories/{repo}"

    def __init__(
        self,
        org: str,
        project: str,
        repo: str,
        access_token: str | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(access_token, session)
        self.org = org
        self.project = project
        self.repo = repo
        if access_token:
            self.session.auth = ("", access_token)

    def get_manifest_sync_state(self) -> list[ClusterSyncStatus]:
        """Resolve every annotated ``flux-`` tag to its commit, tagger and date."""
        base = self.API_BASE.format(org=self.org, project=self.project, repo=self.repo)
        refs = self._get_json(
            f"{base}/refs", {"filter": "tags", "peelTags": "true", "api-version": "4.1"}
        )

        statuses = []
        for ref in refs.get("value", []):
            # Only annotated tags are peeled; lightweight ones have no tag object to read
            if not ref.get("peeledObjectId"):
                continue
            if not is_sync_tag(ref.get("name", "").replace(TAG_REF_PREFIX, "")):
                continue
            tag = self._get_json(
                f"{base}/annotatedtags/{ref['objectId']}", {"api-version": "4.1-preview.1"}
            )
            tagged_by = tag.get("taggedBy") or {}
            statuses.append(
                ClusterSyncStatus(
                    name=tag.get("name") or ref.get("name", "").replace(TAG_REF_PREFIX, ""),
                    commit=(tag.get("taggedObject") or {}).get("objectId", ""),
                    date=parse_timestamp(tagged_by.get("date")),
                    tagger=tagged_by.get("name", ""),
                    message=(tag.get("message") or "").strip(),
                )
            )
        return statuses


def repository_from_url(url: str | None, access_token: str | None = None) -> ManifestRepository | None:
    """Select a repository provider by URL shape.

    Returns:
        Provider, or None when the URL is empty or from an unknown host

    Raises:
        RepositoryError: If a known host's URL is missing path segments
    """
    if not url:
        return None

    parsed = urlparse(url if "://" in url else f"https://{url}")
    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]
    if parts:
        parts[-1] = parts[-1].removesuffix(".git")

    if host.endswith("github.com"):
        if len(parts) < 2:
            raise RepositoryError(f"Cannot parse GitHub repository URL: {LogSanitizer.safe_git_url(url)}")
        return GitHubRepository(parts[0], parts[1], access_token)

    if host.endswith("azure.com"):
        # /<org>/<project>/_git/<repo>
        if len(parts) < 4 or parts[2] != "_git":
            raise RepositoryError(
                f"Cannot parse Azure DevOps repository URL: {LogSanitizer.safe_git_url(url)}"
            )
        return AzureDevOpsRepository(parts[0], parts[1], parts[3], access_token)

    if host.endswith("visualstudio.com"):
        # https://<org>.visualstudio.com/<project>/_git/<repo>
        if len(parts) < 3 or parts[1] != "_git":
            raise RepositoryError(
                f"Cannot parse Azure DevOps repository URL: {LogSanitizer.safe_git_url(url)}"
            )
        return AzureDevOpsRepository(host.split(".")[0], parts[0], parts[2], access_token)

    logger.warning(f"Unsupported manifest repository host: {host}")
    return None


__all__ = [
    "AzureDevOpsRepository",
    "ClusterSyncStatus",
    "GitHubRepository",
    "ManifestRepository",
    "RepositoryError",
    "repository_from_url",
]
