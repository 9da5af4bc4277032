"""Deployment status aggregation.

Joins deployment rows from Azure Table Storage with live build/release
status from the Azure DevOps pipelines of each stage, producing one
Deployment per row:

    source commit --p1--> image in ACR --p2--> HLD commit --p3--> manifest commit

and, when a manifest repository is configured, the cluster sync tags that
show which manifest commit each cluster runs.

Public API:
    Deployment: Row joined with stage results
    OutputFormat: NORMAL / WIDE / JSON
    IntrospectionContext: Table + pipelines built from SpkConfig
    ValidatedOptions: Checked command options
    initialize, validate_values: Set-up before any I/O
    get_deployments_based_on_filters: The join
    get_cluster_sync_statuses: Sync tags for the configured manifest repo
    get_deployments: Join + sync status, errors wrapped with a stable key
    get_status, duration, deployment_status: Per-deployment summaries
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from spk.config_manager import SpkConfig
from spk.deployment_table import (
    DeploymentFilters,
    DeploymentRecord,
    DeploymentTable,
    DeploymentTableError,
)
from spk.errors import ErrorParam, ErrorStatusCode, build_error
from spk.pipelines import AzureDevOpsPipeline, Build, PipelineError, Release
from spk.repositories import ClusterSyncStatus, RepositoryError, repository_from_url

logger = logging.getLogger(__name__)

SUCCESS_GLYPH = "✓"
FAILURE_GLYPH = "✗"
PENDING_GLYPH = "..."

# Most recent sync tags surfaced per query
SYNC_STATUS_LIMIT = 5


class OutputFormat(Enum):
    """Output formats for deployment listings."""

    NORMAL = "normal"
    WIDE = "wide"
    JSON = "json"

    @classmethod
    def from_string(cls, value: str | None) -> "OutputFormat":
        """Parse case-insensitively; anything unrecognized is NORMAL."""
        if value:
            for fmt in cls:
                if fmt.value == value.lower():
                    return fmt
        return cls.NORMAL


@dataclass
class Deployment:
    """A deployment row joined with the results of each pipeline stage."""

    record: DeploymentRecord
    src_to_docker_build: Build | None = None
    docker_to_hld_release: Release | None = None
    docker_to_hld_release_stage: Build | None = None
    hld_to_manifest_build: Build | None = None

    @property
    def deployment_id(self) -> str:
        return self.record.row_key

    @property
    def service(self) -> str:
        return self.record.service or ""

    @property
    def commit_id(self) -> str:
        return self.record.commit_id or ""

    @property
    def image_tag(self) -> str:
        return self.record.image_tag or ""

    @property
    def environment(self) -> str:
        return self.record.env or ""

    @property
    def hld_commit_id(self) -> str:
        return self.record.hld_commit_id or ""

    @property
    def manifest_commit_id(self) -> str:
        return self.record.manifest_commit_id or ""

    @property
    def pr(self) -> str:
        return self.record.pr or ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form of the joined record."""

        def _dump(stage: Build | Release | None) -> dict[str, Any] | None:
            return stage.to_dict() if stage else None

        return {
            "deploymentId": self.deployment_id,
            "service": self.service,
            "commitId": self.commit_id,
            "imageTag": self.image_tag,
            "environment": self.environment,
            "hldCommitId": self.hld_commit_id,
            "manifestCommitId": self.manifest_commit_id,
            "pr": self.pr,
            "timeStamp": self.record.timestamp.isoformat() if self.record.timestamp else None,
            "srcToDockerBuild": _dump(self.src_to_docker_build),
            "dockerToHldRelease": _dump(self.docker_to_hld_release),
            "dockerToHldReleaseStage": _dump(self.docker_to_hld_release_stage),
            "hldToManifestBuild": _dump(self.hld_to_manifest_build),
            "duration": duration(self),
            "status": deployment_status(self),
        }


def get_status(result: str | None) -> str:
    """Map a stage result to a status glyph.

    ``succeeded`` is a check mark, an empty result (still running) is an
    ellipsis, and every other result is a cross.
    """
    if result == "succeeded":
        return SUCCESS_GLYPH
    if not result:
        return PENDING_GLYPH
    return FAILURE_GLYPH


def _hld_stage(deployment: Deployment) -> Build | Release | None:
    return deployment.docker_to_hld_release or deployment.docker_to_hld_release_stage


def start_time(deployment: Deployment) -> datetime | None:
    """Start of the earliest stage with a known start."""
    for stage in (
        deployment.src_to_docker_build,
        _hld_stage(deployment),
        deployment.hld_to_manifest_build,
    ):
        if stage and stage.start_time:
            return stage.start_time
    return None


def end_time(deployment: Deployment) -> datetime | None:
    """Finish of the latest stage with a valid finish time."""
    for stage in (
        deployment.hld_to_manifest_build,
        _hld_stage(deployment),
        deployment.src_to_docker_build,
    ):
        if stage and stage.finish_time:
            return stage.finish_time
    return None


def duration(deployment: Deployment) -> str:
    """Elapsed minutes from first stage start to last known finish.

    Returns at most two decimals without trailing zeros ("180", "2.5"),
    or an empty string when either end is unknown.
    """
    start = start_time(deployment)
    end = end_time(deployment)
    if not start or not end:
        return ""
    minutes = (end - start).total_seconds() / 60
    return f"{minutes:.2f}".rstrip("0").rstrip(".")


def deployment_status(deployment: Deployment) -> str:
    """``In Progress`` while any present stage is unfinished, else ``Complete``."""
    for stage in (
        deployment.src_to_docker_build,
        _hld_stage(deployment),
        deployment.hld_to_manifest_build,
    ):
        if stage and not stage.finished:
            return "In Progress"
    return "Complete"


def _sort_key(deployment: Deployment) -> float:
    when = start_time(deployment) or deployment.record.timestamp
    return when.timestamp() if when else float("-inf")


def get_deployments_based_on_filters(
    table: DeploymentTable,
    src_pipeline: AzureDevOpsPipeline,
    hld_pipeline: AzureDevOpsPipeline,
    manifest_pipeline: AzureDevOpsPipeline,
    filters: DeploymentFilters | None = None,
) -> list[Deployment]:
    """Query rows and join them with their stage results, newest first.

    HLD stage ids are looked up as releases first; ids that are not
    releases are looked up as builds of the same project (multi-stage
    YAML pipelines).

    Raises:
        DeploymentTableError: If the table query fails
        PipelineError: If a pipeline lookup fails
    """
    records = table.query_records(filters)
    logger.debug(f"Found {len(records)} deployment rows")
    if not records:
        return []

    src_builds = src_pipeline.get_builds([r.p1 for r in records if r.p1])
    hld_ids = [r.p2 for r in records if r.p2]
    releases = hld_pipeline.get_releases(hld_ids)
    missing = [i for i in hld_ids if i not in releases]
    release_stages = src_pipeline.get_builds(missing) if missing else {}
    manifest_builds = manifest_pipeline.get_builds([r.p3 for r in records if r.p3])

    deployments = [
        Deployment(
            record=record,
            src_to_docker_build=src_builds.get(record.p1) if record.p1 else None,
            docker_to_hld_release=releases.get(record.p2) if record.p2 else None,
            docker_to_hld_release_stage=release_stages.get(record.p2) if record.p2 else None,
            hld_to_manifest_build=manifest_builds.get(record.p3) if record.p3 else None,
        )
        for record in records
    ]
    deployments.sort(key=_sort_key, reverse=True)
    return deployments


def get_cluster_sync_statuses(config: SpkConfig) -> list[ClusterSyncStatus] | None:
    """Most recent sync tags of the configured manifest repository.

    Returns:
        Up to SYNC_STATUS_LIMIT tags, newest first, or None when no manifest
        repository is configured (as opposed to an empty list when the
        repository has no sync tags)

    Raises:
        RepositoryError: If the tags cannot be read
    """
    devops = config.azure_devops
    repository = repository_from_url(devops.manifest_repository, devops.access_token)
    if repository is None:
        return None

    statuses = repository.get_manifest_sync_state()
    statuses.sort(key=lambda s: s.date.timestamp() if s.date else float("-inf"), reverse=True)
    return statuses[:SYNC_STATUS_LIMIT]


def get_cluster_sync_status_for_deployment(
    deployment: Deployment, sync_statuses: list[ClusterSyncStatus]
) -> ClusterSyncStatus | None:
    """The sync tag on this deployment's manifest commit, if any."""
    for status in sync_statuses:
        if status.matches_commit(deployment.manifest_commit_id):
            return status
    return None


@dataclass
class IntrospectionContext:
    """Everything needed to query deployments, built once per command."""

    config: SpkConfig
    table: DeploymentTable
    src_pipeline: AzureDevOpsPipeline
    hld_pipeline: AzureDevOpsPipeline
    manifest_pipeline: AzureDevOpsPipeline


@dataclass
class ValidatedOptions:
    """Command options after validation."""

    filters: DeploymentFilters = field(default_factory=DeploymentFilters)
    output_format: OutputFormat = OutputFormat.NORMAL
    top: int = 0
    watch: bool = False


def validate_values(
    top: str | int | None = None,
    output: str | None = None,
    watch: bool = False,
    **filters: str | None,
) -> ValidatedOptions:
    """Validate command options before any I/O.

    Args:
        top: Maximum rows to show; empty means no limit
        output: normal | wide | json
        watch: Refresh periodically
        **filters: DeploymentFilters fields

    Raises:
        SpkError: If top is not a positive integer
    """
    n_top = 0
    if top not in (None, ""):
        text = str(top).strip()
        if not text.isdigit() or int(text) <= 0:
            raise build_error(
                ErrorStatusCode.VALIDATION_ERR,
                ErrorParam("introspect-get-cmd-invalid-top", [str(top)]),
            )
        n_top = int(text)

    return ValidatedOptions(
        filters=DeploymentFilters(**filters),
        output_format=OutputFormat.from_string(output),
        top=n_top,
        watch=watch,
    )


def initialize(config: SpkConfig) -> IntrospectionContext:
    """Build the table and pipeline clients from configuration.

    Raises:
        SpkError: If the organization, project or storage table is not configured
    """
    devops = config.azure_devops
    azure = config.introspection
    if not (devops.org and devops.project and azure.is_complete()):
        raise build_error(ErrorStatusCode.VALIDATION_ERR, "introspect-get-cmd-missing-values")

    table = DeploymentTable(
        account_name=azure.account_name,
        account_key=azure.key,
        table_name=azure.table_name,
        partition_key=azure.partition_key,
    )
    return IntrospectionContext(
        config=config,
        table=table,
        src_pipeline=AzureDevOpsPipeline(devops.org, devops.project, devops.access_token),
        hld_pipeline=AzureDevOpsPipeline(
            devops.org, devops.project, devops.access_token, is_release=True
        ),
        manifest_pipeline=AzureDevOpsPipeline(devops.org, devops.project, devops.access_token),
    )


def get_deployments(
    ctx: IntrospectionContext, values: ValidatedOptions
) -> tuple[list[Deployment], list[ClusterSyncStatus] | None]:
    """Fetch joined deployments and cluster sync statuses.

    Raises:
        SpkError: ``introspect-get-cmd-get-deployments-err`` wrapping the
            storage, pipeline or repository failure
    """
    try:
        deployments = get_deployments_based_on_filters(
            ctx.table,
            ctx.src_pipeline,
            ctx.hld_pipeline,
            ctx.manifest_pipeline,
            values.filters,
        )
        sync_statuses = get_cluster_sync_statuses(ctx.config)
    except (DeploymentTableError, PipelineError, RepositoryError) as e:
        raise build_error(
            ErrorStatusCode.EXE_FLOW_ERR, "introspect-get-cmd-get-deployments-err", e
        ) from e
    return deployments, sync_statuses


__all__ = [
    "Deployment",
    "IntrospectionContext",
    "OutputFormat",
    "ValidatedOptions",
    "deployment_status",
    "duration",
    "end_time",
    "get_cluster_sync_status_for_deployment",
    "get_cluster_sync_statuses",
    "get_deployments",
    "get_deployments_based_on_filters",
    "get_status",
    "initialize",
    "start_time",
    "validate_values",
]
