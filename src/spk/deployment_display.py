"""Deployment listing output.

Renders joined deployments as a borderless terminal table (NORMAL: 13
columns, WIDE: 19 columns) or as JSON.
"""

import json
import logging
from datetime import datetime

from rich import box
from rich.console import Console
from rich.table import Table

from spk.deployments import (
    Deployment,
    OutputFormat,
    deployment_status,
    duration,
    end_time,
    get_cluster_sync_status_for_deployment,
    get_status,
    start_time,
)
from spk.pipelines import Build, Release
from spk.repositories import ClusterSyncStatus

logger = logging.getLogger(__name__)

NORMAL_HEADER = [
    "Start Time",
    "Service",
    "Deployment",
    "Commit",
    "Src to ACR",
    "Image Tag",
    "Result",
    "ACR to HLD",
    "Env",
    "Hld Commit",
    "Result",
    "HLD to Manifest",
    "Result",
]

WIDE_HEADER = NORMAL_HEADER + [
    "Duration",
    "Status",
    "Manifest Commit",
    "End Time",
    "PR",
    "Cluster Sync",
]


def _format_time(value: datetime | None) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def _build_result(build: Build | None) -> str:
    return get_status(build.result) if build else ""


def _release_result(release: Release | Build) -> str:
    if isinstance(release, Build):
        return get_status(release.result)
    # A release reports no result until its last environment finishes
    return get_status(release.status if release.finished else "")


def build_row(
    deployment: Deployment,
    output_format: OutputFormat,
    sync_statuses: list[ClusterSyncStatus] | None = None,
) -> list[str]:
    """Cells of one deployment row."""
    record = deployment.record
    src = deployment.src_to_docker_build
    manifest = deployment.hld_to_manifest_build
    hld = deployment.docker_to_hld_release or deployment.docker_to_hld_release_stage

    row = [
        _format_time(start_time(deployment)),
        deployment.service or "-",
        deployment.deployment_id,
        deployment.commit_id or "-",
        src.id if src else (record.p1 or "-"),
        deployment.image_tag or "-",
        _build_result(src),
        hld.id if hld else (record.p2 or "-"),
        deployment.environment.upper() or "-",
        deployment.hld_commit_id or "-",
        _release_result(hld) if hld else "",
        manifest.id if manifest else (record.p3 or "-"),
        _build_result(manifest),
    ]

    if output_format == OutputFormat.WIDE:
        minutes = duration(deployment)
        tag = (
            get_cluster_sync_status_for_deployment(deployment, sync_statuses)
            if sync_statuses
            else None
        )
        row.extend(
            [
                f"{minutes} mins" if minutes else "-",
                deployment_status(deployment),
                deployment.manifest_commit_id or "-",
                _format_time(end_time(deployment)),
                deployment.pr or "-",
                tag.name if tag else "-",
            ]
        )
    return row


def build_rows(
    deployments: list[Deployment],
    output_format: OutputFormat,
    limit: int = 0,
    sync_statuses: list[ClusterSyncStatus] | None = None,
) -> list[list[str]]:
    """Cells for the first ``limit`` deployments (all when limit is 0)."""
    to_display = deployments[:limit] if limit else deployments
    return [build_row(d, output_format, sync_statuses) for d in to_display]


def print_deployments(
    deployments: list[Deployment] | None,
    output_format: OutputFormat,
    limit: int = 0,
    sync_statuses: list[ClusterSyncStatus] | None = None,
    console: Console | None = None,
) -> Table | None:
    """Print deployments as a terminal table.

    Returns:
        The printed table, or None when there is nothing to show
    """
    if not deployments:
        logger.info("No deployments found for specified filters.")
        return None

    header = WIDE_HEADER if output_format == OutputFormat.WIDE else NORMAL_HEADER
    table = Table(box=None, show_edge=False, pad_edge=False, padding=(0, 1, 0, 0))
    for title in header:
        table.add_column(title, no_wrap=True)

    for row in build_rows(deployments, output_format, limit, sync_statuses):
        table.add_row(*row)

    (console or Console()).print(table)
    return table


def print_sync_statuses(
    sync_statuses: list[ClusterSyncStatus] | None, console: Console | None = None
) -> Table | None:
    """Print the most recent cluster sync tags."""
    if not sync_statuses:
        return None

    table = Table(title="Cluster Sync", box=box.SIMPLE)
    for title in ("Tag", "Commit", "Synced At", "Tagger"):
        table.add_column(title, no_wrap=True)
    for status in sync_statuses:
        table.add_row(status.name, status.commit[:7], _format_time(status.date), status.tagger)

    (console or Console()).print(table)
    return table


def render_json(deployments: list[Deployment]) -> str:
    """Serialize joined deployments for machine consumption."""
    return json.dumps([d.to_dict() for d in deployments], indent=2)


__all__ = [
    "NORMAL_HEADER",
    "WIDE_HEADER",
    "build_row",
    "build_rows",
    "print_deployments",
    "print_sync_statuses",
    "render_json",
]
