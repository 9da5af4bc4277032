"""Deployment introspection CLI commands.

This module provides commands for the deployments table:
- Get deployment status across pipeline stages
- Record a pipeline stage result (run from the pipelines)
- Onboard the storage account and table
"""

import logging
import sys
import time
from dataclasses import dataclass

import click
from rich.console import Console

from spk.click_group import SpkGroup
from spk.config_manager import ConfigError, ConfigManager, SpkConfig
from spk.deployment_display import print_deployments, print_sync_statuses, render_json
from spk.deployment_table import (
    DeploymentTable,
    DeploymentTableError,
    add_src_to_acr_pipeline,
    update_acr_to_hld_pipeline,
    update_hld_to_manifest_pipeline,
    update_manifest_commit_id,
)
from spk.deployments import (
    IntrospectionContext,
    OutputFormat,
    ValidatedOptions,
    get_deployments,
    initialize,
    validate_values,
)
from spk.errors import ErrorParam, ErrorStatusCode, SpkError, build_error, log_error
from spk.onboard import OnboardValues, onboard

logger = logging.getLogger(__name__)

# Seconds between refreshes in watch mode
WATCH_INTERVAL = 6


@click.group(name="deployment", cls=SpkGroup)
def deployment_group():
    """Introspect deployments.

    Deployment rows are written by the build and release pipelines into
    an Azure Storage table and joined with live pipeline status on read.

    \b
    COMMANDS:
        get        Show deployments and their stage results
        create     Record a pipeline stage result
        onboard    Set up the storage account and table

    \b
    EXAMPLES:
        # Deployments of one service in WIDE format
        $ spk deployment get --service frontend -o wide

        # Refresh every 6 seconds
        $ spk deployment get --watch
    """
    pass


def print_once(
    ctx: IntrospectionContext, values: ValidatedOptions, console: Console | None = None
) -> None:
    """Fetch deployments once and print them in the requested format."""
    deployments, sync_statuses = get_deployments(ctx, values)
    if values.output_format == OutputFormat.JSON:
        limited = deployments[: values.top] if values.top else deployments
        click.echo(render_json(limited))
        return
    print_deployments(
        deployments, values.output_format, values.top, sync_statuses, console=console
    )
    if values.output_format == OutputFormat.WIDE:
        print_sync_statuses(sync_statuses, console=console)


def watch_deployments(
    ctx: IntrospectionContext, values: ValidatedOptions, console: Console | None = None
) -> None:
    """Refresh every WATCH_INTERVAL seconds until interrupted.

    Each refresh starts after the previous one has printed.
    """
    console = console or Console()
    try:
        while True:
            console.clear()
            print_once(ctx, values, console)
            time.sleep(WATCH_INTERVAL)
    except KeyboardInterrupt:
        logger.debug("Watch interrupted")


@deployment_group.command(name="get")
@click.option("-b", "--build-id", help="Filter by the build id of the source to ACR pipeline")
@click.option("-c", "--commit-id", help="Filter by source commit id")
@click.option("-d", "--deployment-id", help="Filter by deployment id")
@click.option("-i", "--image-tag", help="Filter by docker image tag")
@click.option("-e", "--env", help="Filter by environment name")
@click.option("-s", "--service", help="Filter by service name")
@click.option(
    "-o",
    "--output",
    type=click.Choice(["normal", "wide", "json"], case_sensitive=False),
    default="normal",
    help="Output format",
)
@click.option("-w", "--watch", is_flag=True, help="Refresh every 6 seconds")
@click.option("--top", help="Show only the N most recent deployments")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def get_command(
    build_id: str | None,
    commit_id: str | None,
    deployment_id: str | None,
    image_tag: str | None,
    env: str | None,
    service: str | None,
    output: str,
    watch: bool,
    top: str | None,
    config_path: str | None,
):
    """Get deployment status across pipeline stages.

    \b
    Examples:
      $ spk deployment get --env dev --top 10
      $ spk deployment get --image-tag hello-spk-master-1234 -o json
    """
    try:
        values = validate_values(
            top=top,
            output=output,
            watch=watch,
            env=env,
            image_tag=image_tag,
            build_id=build_id,
            commit_id=commit_id,
            service=service,
            deployment_id=deployment_id,
        )
        config = ConfigManager.load_config(config_path)
        ctx = initialize(config)
        if values.watch:
            watch_deployments(ctx, values)
        else:
            print_once(ctx, values)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except SpkError as e:
        log_error(build_error(ErrorStatusCode.CMD_EXE_ERR, "introspect-get-cmd-failed", e))
        sys.exit(1)


@dataclass
class CreateValues:
    """Values of ``spk deployment create``."""

    p1: str | None = None
    image_tag: str | None = None
    commit_id: str | None = None
    service: str | None = None
    p2: str | None = None
    hld_commit_id: str | None = None
    env: str | None = None
    pr: str | None = None
    p3: str | None = None
    manifest_commit_id: str | None = None
    repository: str | None = None


def create_deployment(table: DeploymentTable, values: CreateValues) -> dict | None:
    """Record the stage result described by ``values``.

    The stage is chosen by which pipeline id is present: p1 creates a row,
    p2 updates rows by image tag, p3 updates rows by HLD commit (or PR),
    and p3 with only a manifest commit fills in that commit.

    Raises:
        SpkError: If the values for the chosen stage are incomplete
        DeploymentTableError: If the table write fails
    """
    if values.p1:
        if not (values.image_tag and values.commit_id and values.service):
            raise build_error(ErrorStatusCode.VALIDATION_ERR, "introspect-create-cmd-p1-missing-values")
        return add_src_to_acr_pipeline(
            table, values.p1, values.image_tag, values.service, values.commit_id, values.repository
        )

    if values.p2:
        if not (values.hld_commit_id and values.env and values.image_tag):
            raise build_error(ErrorStatusCode.VALIDATION_ERR, "introspect-create-cmd-p2-missing-values")
        return update_acr_to_hld_pipeline(
            table,
            values.p2,
            values.image_tag,
            values.hld_commit_id,
            values.env,
            values.pr,
            values.repository,
        )

    if values.p3 and (values.hld_commit_id or values.pr):
        return update_hld_to_manifest_pipeline(
            table,
            values.hld_commit_id or "",
            values.p3,
            values.manifest_commit_id,
            values.pr,
            values.repository,
        )

    if values.p3 and values.manifest_commit_id:
        entry = update_manifest_commit_id(
            table, values.p3, values.manifest_commit_id, values.repository
        )
        if entry is None:
            raise build_error(
                ErrorStatusCode.EXE_FLOW_ERR,
                ErrorParam("introspect-create-cmd-no-manifest-build", [values.manifest_commit_id]),
            )
        return entry

    raise build_error(ErrorStatusCode.VALIDATION_ERR, "introspect-create-cmd-no-ops")


def _table_from_options(
    config: SpkConfig,
    account_name: str | None,
    account_key: str | None,
    table_name: str | None,
    partition_key: str | None,
) -> DeploymentTable:
    azure = config.introspection
    account_name = account_name or azure.account_name
    account_key = account_key or azure.key
    table_name = table_name or azure.table_name
    partition_key = partition_key or azure.partition_key
    if not (account_name and account_key and table_name and partition_key):
        raise build_error(ErrorStatusCode.VALIDATION_ERR, "introspect-create-cmd-missing-values")
    return DeploymentTable(account_name, account_key, table_name, partition_key)


@deployment_group.command(name="create")
@click.option("-n", "--account-name", help="Storage account name")
@click.option("-k", "--account-key", help="Storage account access key")
@click.option("-t", "--table-name", help="Storage table name")
@click.option("-p", "--partition-key", help="Partition key of the environment")
@click.option("--p1", help="Build id of the source to ACR pipeline")
@click.option("--image-tag", help="Docker image tag")
@click.option("--commit-id", help="Source commit id")
@click.option("--service", help="Service name")
@click.option("--p2", help="Release id of the ACR to HLD pipeline")
@click.option("--hld-commit-id", help="HLD commit id")
@click.option("--env", help="Environment name")
@click.option("--pr", help="Pull request id of the HLD change")
@click.option("--p3", help="Build id of the HLD to manifest pipeline")
@click.option("--manifest-commit-id", help="Manifest commit id")
@click.option("--repository", help="Repository URL of the stage")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def create_command(
    account_name: str | None,
    account_key: str | None,
    table_name: str | None,
    partition_key: str | None,
    config_path: str | None,
    **stage_values: str | None,
):
    """Record a pipeline stage result in the deployments table.

    \b
    Examples:
      $ spk deployment create --p1 1234 --image-tag hello-1234 --commit-id e3a8a1 --service hello
      $ spk deployment create --p2 56 --image-tag hello-1234 --hld-commit-id 9f0c2d --env dev
      $ spk deployment create --p3 789 --hld-commit-id 9f0c2d
    """
    try:
        config = ConfigManager.load_config(config_path)
        table = _table_from_options(config, account_name, account_key, table_name, partition_key)
        create_deployment(table, CreateValues(**stage_values))
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (SpkError, DeploymentTableError) as e:
        log_error(build_error(ErrorStatusCode.CMD_EXE_ERR, "introspect-create-cmd-failed", e))
        sys.exit(1)


@deployment_group.command(name="onboard")
@click.option("-s", "--storage-account-name", help="Storage account name")
@click.option("-t", "--storage-table-name", help="Storage table name")
@click.option("-p", "--partition-key", help="Partition key of the environment")
@click.option("-l", "--storage-location", help="Location for a new storage account")
@click.option("-r", "--storage-resource-group-name", help="Resource group of the storage account")
@click.option("--subscription-id", help="Azure subscription id")
@click.option("--tenant-id", help="Service principal tenant id")
@click.option("--service-principal-id", help="Service principal id")
@click.option("--service-principal-password", help="Service principal secret")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def onboard_command(
    storage_account_name: str | None,
    storage_table_name: str | None,
    partition_key: str | None,
    storage_location: str | None,
    storage_resource_group_name: str | None,
    subscription_id: str | None,
    tenant_id: str | None,
    service_principal_id: str | None,
    service_principal_password: str | None,
    config_path: str | None,
):
    """Create the storage account and table for deployment introspection.

    Values not given as options are read from the config file. The
    outcome is written to spk-setup.log with secrets masked.
    """
    try:
        azure = ConfigManager.load_config(config_path).introspection
        values = OnboardValues(
            storage_account_name=storage_account_name or azure.account_name,
            table_name=storage_table_name or azure.table_name,
            partition_key=partition_key or azure.partition_key,
            resource_group=storage_resource_group_name or azure.resource_group,
            subscription_id=subscription_id or azure.subscription_id,
            location=storage_location,
            tenant_id=tenant_id or azure.tenant_id,
            service_principal_id=service_principal_id or azure.service_principal_id,
            service_principal_secret=service_principal_password or azure.service_principal_secret,
        )
        onboard(values, config_path)
        click.echo(
            f"\n✓ Storage table {values.table_name} is ready in {values.storage_account_name}"
        )
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except SpkError as e:
        log_error(e)
        sys.exit(1)


deployment_group.add_alias("get", "g")
deployment_group.add_alias("create", "c")
deployment_group.add_alias("onboard", "o")
