"""CLI entry point for spk.

This module provides the command-line interface for:
- Deployment introspection across the GitOps pipeline stages
- Terraform definitions (scaffold and generate)
- Command reference docs and release diffs

Commands:
    spk                          # Show help
    spk init                     # Write a starter config
    spk deployment get           # Show deployment status
    spk infra generate -p west   # Generate Terraform for a leaf definition
"""

import logging

import click

from spk import __version__
from spk.click_group import SpkGroup
from spk.commands.config import config_group, init_command
from spk.commands.deployment import deployment_group
from spk.commands.docs import docs_group
from spk.commands.infra import infra_group


@click.group(
    cls=SpkGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
@click.version_option(version=__version__)
def main(ctx: click.Context, verbose: bool) -> None:
    """spk - GitOps deployment pipeline tooling for Azure.

    Tracks deployments from source commit through container image, HLD
    and manifest commits, and generates Terraform from layered
    definitions.

    \b
    DEPLOYMENT COMMANDS:
        deployment get       Show deployments and their stage results (alias: d g)
        deployment create    Record a pipeline stage result
        deployment onboard   Set up the storage account and table

    \b
    INFRASTRUCTURE COMMANDS:
        infra scaffold       Create a definition.yaml from a template
        infra generate       Generate Terraform files from definitions

    \b
    CONFIGURATION:
        init                 Write a starter config file
        config show          Print the config with secrets masked
        Config file: ~/.spk/config.toml

    \b
    EXAMPLES:
        $ spk deployment get --env prod --top 5 -o wide
        $ spk infra generate --project west

    For help on any command: spk <command> --help
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )

    # If no subcommand provided, show help
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


main.add_command(init_command)
main.add_command(config_group)
main.add_command(deployment_group)
main.add_command(infra_group)
main.add_command(docs_group)
main.add_alias("deployment", "d")
main.add_alias("infra", "i")


if __name__ == "__main__":
    main()


__all__ = ["main"]
