"""Infrastructure CLI commands.

Commands for scaffolding definitions from Terraform templates and
generating deployable Terraform folders from parent/leaf definitions.
"""

import logging
import sys
from pathlib import Path

import click

from spk.click_group import SpkGroup
from spk.config_manager import ConfigError, ConfigManager
from spk.errors import ErrorStatusCode, SpkError, build_error, log_error
from spk.modules.infra_generator import generate
from spk.modules.scaffold import ScaffoldOptions, scaffold

logger = logging.getLogger(__name__)


@click.group(name="infra", cls=SpkGroup)
def infra_group():
    """Manage Terraform infrastructure definitions.

    A definition.yaml names a template (source repository, folder and
    version) plus its variables. Leaf folders inherit and override the
    definition of their parent folder.

    \b
    COMMANDS:
        scaffold   Create a definition.yaml from a template
        generate   Generate Terraform files from definitions

    \b
    EXAMPLES:
        # Scaffold a parent definition
        $ spk infra scaffold -n fabrikam -s https://github.com/microsoft/bedrock \\
            -t cluster/environments/azure-simple -v v0.0.1

        # Generate the west leaf from inside the parent folder
        $ cd fabrikam && spk infra generate -p west
    """
    pass


@infra_group.command(name="scaffold")
@click.option("-n", "--name", help="Name of the folder to create")
@click.option("-s", "--source", help="Template repository URL")
@click.option("-t", "--template", help="Template folder within the repository")
@click.option("-v", "--version", help="Tag, branch or commit of the template")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def scaffold_command(
    name: str | None,
    source: str | None,
    template: str | None,
    version: str | None,
    config_path: str | None,
):
    """Create <name>/definition.yaml from a Terraform template.

    When --source is omitted the infra repository of the config file is used.
    """
    try:
        config = ConfigManager.load_config(config_path)
        definition = scaffold(ScaffoldOptions(name, source, template, version), config)
        click.echo(f"\n✓ Created {definition}")
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except SpkError as e:
        log_error(build_error(ErrorStatusCode.CMD_EXE_ERR, "infra-scaffold-cmd-failed", e))
        sys.exit(1)


@infra_group.command(name="generate")
@click.option(
    "-p",
    "--project",
    help="Leaf folder to generate, relative to the current (parent) folder",
    type=click.Path(file_okay=False),
)
@click.option(
    "-o",
    "--output",
    help="Folder to write <parent>-generated into (default: next to the parent)",
    type=click.Path(file_okay=False),
)
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def generate_command(project: str | None, output: str | None, config_path: str | None):
    """Generate Terraform files for a definition.

    Run from the parent folder. Without --project the parent definition
    itself is generated.
    """
    parent_dir = Path.cwd()
    leaf_dir = parent_dir / project if project else parent_dir
    try:
        config = ConfigManager.load_config(config_path)
        target = generate(parent_dir, leaf_dir, output, config)
        click.echo(f"\n✓ Generated {target}")
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except SpkError as e:
        log_error(build_error(ErrorStatusCode.CMD_EXE_ERR, "infra-generate-cmd-failed", e))
        sys.exit(1)


infra_group.add_alias("scaffold", "s")
infra_group.add_alias("generate", "g")
