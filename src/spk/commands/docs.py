"""Docs CLI commands.

Generate the command manifest of this spk release and compare manifests
of releases for the release notes.
"""

import sys
from pathlib import Path

import click
from rich.console import Console

from spk.click_group import SpkGroup
from spk.errors import ErrorParam, ErrorStatusCode, SpkError, build_error, log_error
from spk.modules.command_docs import (
    build_command_manifest,
    compare_manifests,
    compare_releases,
    format_releases_html,
    print_release_changes,
    read_manifest,
    write_manifest,
)


@click.group(name="docs", cls=SpkGroup, hidden=True)
def docs_group():
    """Command reference tooling.

    \b
    COMMANDS:
        generate   Write the command manifest of this release
        diff       Show command changes between releases

    \b
    EXAMPLES:
        $ spk docs generate -o 0.6.0.json
        $ spk docs diff 0.5.8.json 0.6.0.json
        $ spk docs diff releases/*.json --html -o changes.html
    """
    pass


@docs_group.command(name="generate")
@click.option(
    "-o",
    "--output",
    default="data.json",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Manifest file to write",
)
@click.pass_context
def generate_command(ctx: click.Context, output: str):
    """Write the command manifest of this spk release."""
    root = ctx.find_root().command
    try:
        manifest = build_command_manifest(root)
        path = write_manifest(manifest, output)
        click.echo(f"✓ Wrote {len(manifest)} commands to {path}")
    except OSError as e:
        click.echo(f"Error: Failed to write {output}: {e}", err=True)
        sys.exit(1)


def _load_releases(manifests: tuple[str, ...]) -> dict[str, dict]:
    """Read manifests keyed by release name (the file stem)."""
    loaded: dict[str, dict] = {}
    seen: dict[str, str] = {}
    for path in manifests:
        release = Path(path).stem
        if release in seen:
            raise build_error(
                ErrorStatusCode.VALIDATION_ERR,
                ErrorParam("docs-diff-duplicate-release", [seen[release], path, release]),
            )
        seen[release] = path
        loaded[release] = read_manifest(path)
    return loaded


@docs_group.command(name="diff")
@click.argument("manifests", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--html", "as_html", is_flag=True, help="Render the changes as HTML")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Write to a file")
def diff_command(manifests: tuple[str, ...], as_html: bool, output: str | None):
    """Show command changes between release manifests.

    Each manifest file is named after its release (0.6.0.json). Two files
    are compared in the order given; more files are ordered by version and
    each release is compared with the one before it.
    """
    if len(manifests) < 2:
        click.echo("Error: At least two manifests are required", err=True)
        sys.exit(1)

    try:
        if len(manifests) == 2:
            prev, cur = (read_manifest(path) for path in manifests)
            diffs = {Path(manifests[1]).stem: compare_manifests(prev, cur)}
        else:
            diffs = compare_releases(_load_releases(manifests))

        if as_html:
            text = format_releases_html(diffs)
            if output:
                Path(output).write_text(text + "\n")
                click.echo(f"✓ Wrote {output}")
            else:
                click.echo(text)
        elif output:
            with open(output, "w") as f:
                print_release_changes(diffs, Console(file=f, width=200))
            click.echo(f"✓ Wrote {output}")
        else:
            print_release_changes(diffs)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except SpkError as e:
        log_error(build_error(ErrorStatusCode.CMD_EXE_ERR, "docs-cmd-failed", e))
        sys.exit(1)


docs_group.add_alias("generate", "g")
docs_group.add_alias("diff", "d")
