"""Command manifest for the docs site, and diffs between releases.

The manifest maps a command key (``"deployment get"``) to the command's
shape::

    {
        "command": "get [options]",
        "alias": "g",
        "description": "Get deployment status",
        "options": [{"arg": "-o, --output <output>", "description": "...",
                     "required": false, "default": "normal"}]
    }

Comparing the manifests of two releases yields the commands added,
removed and changed. Within a changed command, options are compared by
their ``arg`` text. A removed and an added option that share their short
alias and variable name (``--foo-bar`` -> ``fooBar``) are reported as one
changed option; any other difference is a remove plus an add.

Public API:
    build_command_manifest: Walk a click command tree
    compare_manifests: Diff two manifests
    compare_releases: Consecutive diffs of several releases
    format_changes_text, format_changes_html: Render diffs
    read_manifest, write_manifest: JSON I/O
"""

import html
import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import click
from rich.console import Console

from spk.errors import ErrorParam, ErrorStatusCode, build_error

logger = logging.getLogger(__name__)

_LONG_OPTION = re.compile(r"\s?--([-\w]+)\s?")
_SHORT_ALIAS = re.compile(r"^-([a-zA-Z]),\s")
_DASH_LETTER = re.compile(r"\.?(-[a-z])")

CHANGE_TEMPLATE = (
    '<div class="change-container"><div class="change-header" id="change_rel_{id}">'
    '{version}</div><div class="change-content">{changes}</div></div>'
)
SECTION_TEMPLATE = '<div class="{css}">{title}</div><ul class="change-list">{items}</ul>'


@dataclass
class ManifestDiff:
    """Differences between two manifests."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.added:
            data["added"] = self.added
        if self.removed:
            data["removed"] = self.removed
        if self.changed:
            data["changed"] = self.changed
        return data


def _option_arg(option: click.Option) -> str:
    names = sorted(option.opts + option.secondary_opts, key=len)
    arg = ", ".join(names)
    if not option.is_flag:
        arg += f" <{option.name.replace('_', '-')}>"
    return arg


def _description(command: click.Command) -> str:
    text = inspect.cleandoc(command.help or "")
    return " ".join(text.split("\n\n")[0].split())


def _command_entry(command: click.Command, alias: str) -> dict[str, Any]:
    arguments = [
        f"<{p.name.replace('_', '-')}>" for p in command.params if isinstance(p, click.Argument)
    ]
    options = [p for p in command.params if isinstance(p, click.Option)]

    invocation = " ".join([command.name, *arguments])
    if options:
        invocation += " [options]"

    entries = []
    for option in options:
        default = option.default
        if default in ((), False) or callable(default):
            default = None
        entries.append(
            {
                "arg": _option_arg(option),
                "description": option.help or "",
                "required": bool(option.required),
                "default": default,
            }
        )
    return {
        "command": invocation,
        "alias": alias,
        "description": _description(command),
        "options": entries,
    }


def build_command_manifest(group: click.Group, prefix: str = "") -> dict[str, dict[str, Any]]:
    """Map every leaf command under ``group`` to its manifest entry."""
    aliases = {name: alias for alias, name in getattr(group, "aliases", {}).items()}
    manifest: dict[str, dict[str, Any]] = {}
    for name in sorted(group.commands):
        command = group.commands[name]
        if command.hidden:
            continue
        key = f"{prefix}{name}"
        if isinstance(command, click.Group):
            manifest.update(build_command_manifest(command, f"{key} "))
        else:
            manifest[key] = _command_entry(command, aliases.get(name, ""))
    return manifest


def arg_to_variable_name(arg: str) -> str | None:
    """Variable name of an option argument: ``--service-principal-id`` -> ``servicePrincipalId``."""
    match = _LONG_OPTION.search(arg)
    if not match:
        return None
    name = _DASH_LETTER.sub(lambda m: m.group(1).upper(), match.group(1))
    return name.replace("-", "")


def _option_args(entry: dict[str, Any]) -> list[str]:
    return [opt["arg"] for opt in entry.get("options") or []]


def compare_args_diff(prev: list[str], cur: list[str]) -> list[str]:
    """Option args in ``cur`` that ``prev`` does not have."""
    return [arg for arg in cur if arg not in prev]


def compare_args_changed(prev: dict[str, Any], cur: dict[str, Any]) -> dict[str, list[str]] | None:
    """Options added, removed and changed between two versions of a command."""
    prev_args = _option_args(prev)
    cur_args = _option_args(cur)
    removed = compare_args_diff(cur_args, prev_args)
    added = compare_args_diff(prev_args, cur_args)

    # variable name -> (short alias, removed arg)
    removed_aliases: dict[str, tuple[str, str]] = {}
    for arg in removed:
        match = _SHORT_ALIAS.match(arg)
        if match:
            removed_aliases[arg_to_variable_name(arg)] = (match.group(1), arg)

    changed = []
    still_added = []
    for arg in added:
        match = _SHORT_ALIAS.match(arg)
        previous = removed_aliases.get(arg_to_variable_name(arg)) if match else None
        if previous and previous[0] == match.group(1) and previous[1] in removed:
            removed.remove(previous[1])
            changed.append(f'change "{previous[1]}" to "{arg}"')
        else:
            still_added.append(arg)

    changes = {}
    if removed:
        changes["removed"] = removed
    if still_added:
        changes["added"] = still_added
    if changed:
        changes["changed"] = changed
    return changes or None


def compare_version_changed(
    prev: dict[str, dict[str, Any]], cur: dict[str, dict[str, Any]]
) -> dict[str, dict[str, Any]]:
    """Per-command changes for commands present in both manifests."""
    changes = {}
    for key in prev:
        if key not in cur:
            continue
        prev_cmd, cur_cmd = prev[key], cur[key]
        modified: dict[str, Any] = {}
        if prev_cmd.get("command") != cur_cmd.get("command"):
            modified["command"] = f"{prev_cmd.get('command')} to {cur_cmd.get('command')}"
        if prev_cmd.get("alias") != cur_cmd.get("alias"):
            modified["alias"] = {"prev": prev_cmd.get("alias"), "cur": cur_cmd.get("alias")}
        options = compare_args_changed(prev_cmd, cur_cmd)
        if options:
            modified["options"] = options
        if modified:
            changes[key] = modified
    return changes


def compare_manifests(
    prev: dict[str, dict[str, Any]], cur: dict[str, dict[str, Any]]
) -> ManifestDiff:
    """Commands added, removed and changed from ``prev`` to ``cur``."""
    return ManifestDiff(
        added=[key for key in cur if key not in prev],
        removed=[key for key in prev if key not in cur],
        changed=compare_version_changed(prev, cur),
    )


def version_sort_key(version: str) -> list[Any]:
    """Natural ordering: ``0.5.10`` after ``0.5.9``; non-numeric names after numbers."""
    return [int(token) if token.isdigit() else token for token in re.split(r"(\d+)", version)]


def compare_releases(manifests: dict[str, dict[str, dict[str, Any]]]) -> dict[str, ManifestDiff]:
    """Diff each release against the one before it.

    Returns:
        Release -> diff from its predecessor, newest release first. The
        oldest release has no predecessor and is left out.
    """
    versions = sorted(manifests, key=version_sort_key)
    diffs = {}
    for prev, cur in zip(versions, versions[1:]):
        diffs[cur] = compare_manifests(manifests[prev], manifests[cur])
    return dict(reversed(list(diffs.items())))


def format_changes_text(diff: ManifestDiff) -> list[str]:
    """Plain-text lines describing a diff."""
    if not diff:
        return ["no changes"]

    lines = []
    if diff.added:
        lines.append("Commands Added")
        lines.extend(f"  spk {key}" for key in diff.added)
    if diff.removed:
        lines.append("Commands Removed")
        lines.extend(f"  spk {key}" for key in diff.removed)
    if diff.changed:
        lines.append("Commands Changed")
        for key, modified in diff.changed.items():
            lines.append(f"  spk {key}")
            if "command" in modified:
                lines.append(f"    Command Values Changed: {modified['command']}")
            if "alias" in modified:
                alias = modified["alias"]
                lines.append(f"    Alias Changed: {alias['prev'] or '-'} to {alias['cur'] or '-'}")
            options = modified.get("options") or {}
            for section, title in (
                ("added", "Options Added"),
                ("removed", "Options Removed"),
                ("changed", "Options Changed"),
            ):
                if section in options:
                    lines.append(f"    {title}")
                    lines.extend(f"      {item}" for item in options[section])
    return lines


def print_release_changes(
    diffs: dict[str, ManifestDiff], console: Console | None = None
) -> None:
    console = console or Console()
    for version, diff in diffs.items():
        console.print(f"[bold]{version}[/bold]")
        for line in format_changes_text(diff):
            # Option args contain [options] and <value> text, not markup
            console.print(line, markup=False, highlight=False)
        console.print()


def _section(css: str, title: str, items: list[str]) -> str:
    body = "".join(f"<li>{html.escape(item)}</li>" for item in items)
    return SECTION_TEMPLATE.format(css=css, title=title, items=body)


def format_changes_html(diff: ManifestDiff) -> str:
    """HTML fragment describing a diff, with all manifest text escaped."""
    if not diff:
        return "no changes"

    parts = []
    if diff.added:
        parts.append(_section("change-item-header", "Commands Added", [f"spk {k}" for k in diff.added]))
    if diff.removed:
        parts.append(
            _section("change-item-header", "Commands Removed", [f"spk {k}" for k in diff.removed])
        )
    if diff.changed:
        parts.append('<div class="change-item-header">Commands Changed</div>')
        for key, modified in diff.changed.items():
            parts.append(
                f'<div class="option-change"><div class="option-change-title">{html.escape(key)}</div>'
            )
            if "command" in modified:
                parts.append(
                    _section("change-option-header", "Command Values Changed", [modified["command"]])
                )
            if "alias" in modified:
                alias = modified["alias"]
                parts.append(
                    _section(
                        "change-option-header",
                        "Alias Changed",
                        [f"{alias['prev'] or '-'} to {alias['cur'] or '-'}"],
                    )
                )
            options = modified.get("options") or {}
            for section, title in (
                ("added", "Options Added"),
                ("removed", "Options Removed"),
                ("changed", "Options Changed"),
            ):
                if section in options:
                    parts.append(_section("change-option-header", title, options[section]))
            parts.append("</div>")
    return "".join(parts)


def format_releases_html(diffs: dict[str, ManifestDiff]) -> str:
    return "".join(
        CHANGE_TEMPLATE.format(
            id=html.escape(version.replace(".", "_")),
            version=html.escape(version),
            changes=format_changes_html(diff),
        )
        for version, diff in diffs.items()
    )


def read_manifest(path: str | Path) -> dict[str, dict[str, Any]]:
    """Load a manifest JSON file.

    Raises:
        SpkError: ``docs-manifest-read-err`` if unreadable or not a JSON object
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise build_error(
            ErrorStatusCode.FILE_IO_ERR, ErrorParam("docs-manifest-read-err", [str(path)]), e
        ) from e
    if not isinstance(data, dict):
        raise build_error(
            ErrorStatusCode.FILE_IO_ERR, ErrorParam("docs-manifest-read-err", [str(path)])
        )
    return data


def write_manifest(manifest: dict[str, dict[str, Any]], path: str | Path) -> Path:
    path = Path(path)
    path.write_text(json.dumps(manifest, indent=2) + "\n")
    logger.info(f"Wrote command manifest with {len(manifest)} commands to {path}")
    return path


__all__ = [
    "ManifestDiff",
    "arg_to_variable_name",
    "build_command_manifest",
    "compare_args_changed",
    "compare_manifests",
    "compare_releases",
    "format_changes_html",
    "format_changes_text",
    "format_releases_html",
    "print_release_changes",
    "read_manifest",
    "version_sort_key",
    "write_manifest",
]
