"""Azure DevOps pipeline client.

Resolves build and release metadata by id for the three pipeline stages a
deployment moves through:

- source -> ACR (build pipeline)
- ACR -> HLD (classic release pipeline, or a multi-stage YAML build)
- HLD -> manifest (build pipeline)

Lookups are batched: one REST call per stage for all ids in a query.

Public API:
    Build, Release: Stage results
    AzureDevOpsPipeline: Build/release lookups for one organization/project
    PipelineError: Lookup failed
    parse_timestamp: Lenient ISO-8601 parsing used for stage times
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from spk.retry_handler import raise_for_transient_status, retry_with_exponential_backoff

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Failed to fetch build or release metadata."""

    pass


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an Azure DevOps timestamp, returning None when invalid.

    Naive timestamps are treated as UTC.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Build:
    """A pipeline build."""

    id: str
    build_number: str = ""
    status: str = ""
    result: str = ""
    start_time: datetime | None = None
    finish_time: datetime | None = None
    queue_time: datetime | None = None
    source_branch: str = ""
    source_version: str = ""
    url: str = ""
    definition_name: str = ""

    @property
    def finished(self) -> bool:
        return self.status == "completed"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Build":
        """Create from an Azure DevOps build resource."""
        return cls(
            id=str(data.get("id", "")),
            build_number=str(data.get("buildNumber") or ""),
            status=data.get("status") or "",
            result=data.get("result") or "",
            start_time=parse_timestamp(data.get("startTime")),
            finish_time=parse_timestamp(data.get("finishTime")),
            queue_time=parse_timestamp(data.get("queueTime")),
            source_branch=data.get("sourceBranch") or "",
            source_version=data.get("sourceVersion") or "",
            url=(data.get("_links") or {}).get("web", {}).get("href", ""),
            definition_name=(data.get("definition") or {}).get("name", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "buildNumber": self.build_number,
            "status": self.status,
            "result": self.result,
            "startTime": _iso(self.start_time),
            "finishTime": _iso(self.finish_time),
            "queueTime": _iso(self.queue_time),
            "sourceBranch": self.source_branch,
            "sourceVersion": self.source_version,
            "url": self.url,
            "definitionName": self.definition_name,
        }


@dataclass
class Release:
    """A classic release, with status taken from its last environment."""

    id: str
    name: str = ""
    status: str = ""
    start_time: datetime | None = None
    finish_time: datetime | None = None
    image_version: str = ""
    url: str = ""
    definition_name: str = ""

    # Environment states after which a release no longer changes
    FINAL_STATES = frozenset({"succeeded", "partiallySucceeded", "rejected", "canceled"})

    @property
    def finished(self) -> bool:
        return self.status in self.FINAL_STATES

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Release":
        """Create from an Azure DevOps release resource (environments expanded)."""
        environments = data.get("environments") or []
        status = environments[-1].get("status", "") if environments else data.get("status", "")

        image_version = ""
        artifacts = data.get("artifacts") or []
        if artifacts:
            version = (artifacts[0].get("definitionReference") or {}).get("version") or {}
            image_version = version.get("name", "")

        release = cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            status=status or "",
            start_time=parse_timestamp(data.get("createdOn")),
            image_version=image_version,
            url=(data.get("_links") or {}).get("web", {}).get("href", ""),
            definition_name=(data.get("releaseDefinition") or {}).get("name", ""),
        )
        if release.finished:
            release.finish_time = parse_timestamp(data.get("modifiedOn"))
        return release

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "startTime": _iso(self.start_time),
            "finishTime": _iso(self.finish_time),
            "imageVersion": self.image_version,
            "url": self.url,
            "definitionName": self.definition_name,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class AzureDevOpsPipeline:
    """Build and release lookups for one Azure DevOps project."""

    BUILD_API = "https://dev.azure.com/{org}/{project}/_apis/build/builds"
    RELEASE_API = "https://vsrm.dev.azure.com/{org}/{project}/_apis/release/releases"
    API_VERSION = "5.0"
    API_TIMEOUT = 30

    def __init__(
        self,
        org: str,
        project: str,
        access_token: str | None = None,
        is_release: bool = False,
        session: requests.Session | None = None,
    ):
        self.org = org
        self.project = project
        self.is_release = is_release
        self.session = session or requests.Session()
        if access_token:
            self.session.auth = ("", access_token)

    def get_builds(self, build_ids: list[str]) -> dict[str, Build]:
        """Fetch builds by id.

        Returns:
            Mapping of build id to Build; ids not found are absent

        Raises:
            PipelineError: If the request fails
        """
        ids = _unique(build_ids)
        if not ids:
            return {}

        url = self.BUILD_API.format(org=self.org, project=self.project)
        data = self._get(url, {"buildIds": ",".join(ids), "api-version": self.API_VERSION})
        builds = {}
        for item in data.get("value", []):
            build = Build.from_api(item)
            builds[build.id] = build
        logger.debug(f"Fetched {len(builds)}/{len(ids)} builds from {self.org}/{self.project}")
        return builds

    def get_releases(self, release_ids: list[str]) -> dict[str, Release]:
        """Fetch classic releases by id.

        Returns:
            Mapping of release id to Release; ids not found are absent

        Raises:
            PipelineError: If the request fails
        """
        ids = _unique(release_ids)
        if not ids:
            return {}

        url = self.RELEASE_API.format(org=self.org, project=self.project)
        params = {
            "releaseIdFilter": ",".join(ids),
            "$expand": "environments,artifacts",
            "api-version": self.API_VERSION,
        }
        data = self._get(url, params)
        releases = {}
        for item in data.get("value", []):
            release = Release.from_api(item)
            releases[release.id] = release
        logger.debug(f"Fetched {len(releases)}/{len(ids)} releases from {self.org}/{self.project}")
        return releases

    def get_build_or_release(self, item_id: str) -> Build | Release | None:
        """Fetch a single build, or release when this is a release pipeline."""
        if self.is_release:
            return self.get_releases([item_id]).get(str(item_id))
        return self.get_builds([item_id]).get(str(item_id))

    def _get(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._request(url, params)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise PipelineError(f"Request to {url} failed: {e}") from e

    @retry_with_exponential_backoff(max_attempts=3)
    def _request(self, url: str, params: dict[str, str]) -> requests.Response:
        response = self.session.get(url, params=params, timeout=self.API_TIMEOUT)
        raise_for_transient_status(response)
        return response


def _unique(ids: list[str]) -> list[str]:
    """Drop empty ids and duplicates, keeping first-seen order."""
    seen: dict[str, None] = {}
    for item in ids:
        if item:
            seen.setdefault(str(item), None)
    return list(seen)


__all__ = [
    "AzureDevOpsPipeline",
    "Build",
    "PipelineError",
    "Release",
    "parse_timestamp",
]
