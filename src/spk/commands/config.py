"""Configuration CLI commands.

``spk init`` writes a starter config file and ``spk config show`` prints
the loaded configuration with secrets masked.
"""

import sys

import click
import tomlkit

from spk.click_group import SpkGroup
from spk.config_manager import AzureDevOpsConfig, ConfigError, ConfigManager, SpkConfig

# Written when no token is given so the PAT stays out of the file
DEFAULT_ACCESS_TOKEN = "${env:SPK_ACCESS_TOKEN}"


@click.command(name="init")
@click.option("--org", help="Azure DevOps organization")
@click.option("--project", help="Azure DevOps project")
@click.option(
    "--access-token",
    help="Personal access token, or an ${env:NAME} reference (default: ${env:SPK_ACCESS_TOKEN})",
)
@click.option("--manifest-repository", help="Manifest repository URL")
@click.option("--hld-repository", help="HLD repository URL")
@click.option("--infra-repository", help="Infrastructure template repository (host/path)")
@click.option("--force", is_flag=True, help="Overwrite values in an existing config file")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def init_command(
    org: str | None,
    project: str | None,
    access_token: str | None,
    manifest_repository: str | None,
    hld_repository: str | None,
    infra_repository: str | None,
    force: bool,
    config_path: str | None,
):
    """Write a starter spk config file.

    Organization and project are prompted for when not given. Storage
    values are added later by `spk deployment onboard`.

    \b
    EXAMPLES:
        $ spk init
        $ spk init --org contoso --project fabrikam \\
            --manifest-repository https://github.com/contoso/manifests
    """
    try:
        path = ConfigManager.get_config_path(config_path)
        if path.exists() and not force:
            click.echo(f"Error: {path} already exists (use --force to update it)", err=True)
            sys.exit(1)

        if not org:
            org = click.prompt("Azure DevOps organization", type=str)
        if not project:
            project = click.prompt("Azure DevOps project", type=str)

        config = SpkConfig(
            azure_devops=AzureDevOpsConfig(
                org=org,
                project=project,
                access_token=access_token or DEFAULT_ACCESS_TOKEN,
                manifest_repository=manifest_repository,
                hld_repository=hld_repository,
                infra_repository=infra_repository,
            )
        )
        written = ConfigManager.save_config(config, config_path)
        click.echo(f"✓ Wrote {written}")
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group(name="config", cls=SpkGroup)
def config_group():
    """Inspect the spk configuration."""
    pass


@config_group.command(name="show")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def show_command(config_path: str | None):
    """Print the configuration with secrets masked."""
    try:
        config = ConfigManager.load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"# {ConfigManager.get_config_path(config_path)}")
    click.echo(tomlkit.dumps(config.masked()), nl=False)
