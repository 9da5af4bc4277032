"""Scaffold a definition.yaml from a Terraform template.

``spk infra scaffold`` fetches the template, reads its ``variables.tf``
(and ``backend.tfvars`` when present) and writes ``<name>/definition.yaml``
with the template coordinates and one entry per variable that has no
default, set to ``<insert value>`` for the user to fill in.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from spk.config_manager import SpkConfig
from spk.errors import ErrorParam, ErrorStatusCode, SpkError, build_error
from spk.modules.definition import SourceInformation
from spk.modules.infra_common import (
    BACKEND_TFVARS,
    DEFAULT_VAR_VALUE,
    DEFINITION_YAML,
    TERRAFORM_TFVARS,
    VARIABLES_TF,
)
from spk.modules.template_source import validate_remote_source

logger = logging.getLogger(__name__)

_VARIABLE_KEYWORD = re.compile(r"^variable", re.MULTILINE)
_BLOCK_OPEN = re.compile(r'"\s*\{')
_DEFAULT = re.compile(r"default\s*=\s*(.*)")


@dataclass
class ScaffoldOptions:
    """Options of ``spk infra scaffold``."""

    name: str | None = None
    source: str | None = None
    template: str | None = None
    version: str | None = None


def parse_variables_tf(data: str) -> dict[str, str]:
    """Map each ``variable`` block of a variables.tf to its default.

    Variables without a default map to an empty string; quoted defaults
    are unquoted.
    """
    fields: dict[str, str] = {}
    for block in _VARIABLE_KEYWORD.split(data):
        parts = _BLOCK_OPEN.split(block.strip(), maxsplit=1)
        name = parts[0].strip().strip('"')
        if not name or len(parts) < 2:
            continue
        match = _DEFAULT.search(parts[1])
        if not match:
            fields[name] = ""
            continue
        value = match.group(1).strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        fields[name] = value
    return fields


def parse_backend_tfvars(data: str) -> dict[str, str]:
    """Parse ``key = "value"`` lines of a backend.tfvars."""
    backend: dict[str, str] = {}
    for line in data.splitlines():
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            backend[key] = value.replace('"', "").strip()
    return backend


def generate_cluster_definition(
    name: str,
    source: str,
    template: str,
    version: str,
    backend_data: str,
    vartf_data: str,
) -> dict[str, Any]:
    """Build the definition for a template's variables.tf and backend.tfvars.

    Variables with defaults are left out (the template default applies);
    the rest are set to ``<insert value>``.
    """
    definition: dict[str, Any] = {
        "name": name,
        "source": source,
        "template": template,
        "version": version,
    }
    if backend_data:
        definition["backend"] = parse_backend_tfvars(backend_data)

    fields = parse_variables_tf(vartf_data)
    if fields:
        with_defaults = [key for key, value in fields.items() if value]
        definition["variables"] = {
            key: DEFAULT_VAR_VALUE for key, value in fields.items() if not value
        }
        if with_defaults:
            logger.info(
                "Default values will be used for these variables:\n"
                + "\n".join(with_defaults)
                + f"\nCustom values can be set for these variables in the {DEFINITION_YAML} file."
            )
    return definition


def validate_values(config: SpkConfig | None, opts: ScaffoldOptions) -> None:
    """Raises SpkError when required options are missing."""
    devops = config.azure_devops if config else None
    if not (devops and devops.access_token and devops.infra_repository) and not opts.source:
        raise build_error(ErrorStatusCode.VALIDATION_ERR, "infra-scaffold-cmd-src-missing")
    if not (opts.name and opts.version and opts.template):
        raise build_error(ErrorStatusCode.VALIDATION_ERR, "infra-scaffold-cmd-values-missing")


def construct_source(config: SpkConfig) -> str:
    """Template source from the configured infra repository and token."""
    devops = config.azure_devops
    logger.info("Infrastructure repository detected from spk config")
    return f"https://spk:{devops.access_token}@{devops.infra_repository}"


def write_definition(opts: ScaffoldOptions) -> Path:
    """Write ``<name>/definition.yaml`` from the copied template files.

    Raises:
        SpkError: ``infra-err-create-scaffold`` wrapping read/write failures
    """
    env_dir = Path(opts.name)
    try:
        vartf_file = env_dir / VARIABLES_TF
        vartf_data = vartf_file.read_text()
        if not vartf_data:
            raise build_error(
                ErrorStatusCode.ENV_SETTING_ERR,
                ErrorParam("infra-unable-read-var-file", [str(vartf_file)]),
            )

        backend_file = env_dir / BACKEND_TFVARS
        backend_data = backend_file.read_text() if backend_file.is_file() else ""
        if backend_data:
            logger.info(f"A remote backend configuration was found: {backend_file}")

        definition = generate_cluster_definition(
            opts.name, opts.source, opts.template, opts.version, backend_data, vartf_data
        )
        definition_file = env_dir / DEFINITION_YAML
        with open(definition_file, "w") as f:
            yaml.safe_dump(definition, f, sort_keys=False, default_flow_style=False)
    except (SpkError, OSError) as e:
        raise build_error(ErrorStatusCode.EXE_FLOW_ERR, "infra-err-create-scaffold", e) from e

    logger.info(f"Wrote {definition_file}")
    return definition_file


def remove_template_files(env_dir: Path) -> None:
    """Delete the copied template files, keeping only the definition."""
    for path in env_dir.iterdir():
        if path.name != DEFINITION_YAML and path.is_file():
            path.unlink()


def scaffold(
    opts: ScaffoldOptions, config: SpkConfig | None = None, templates_path: Path | None = None
) -> Path:
    """Fetch the template and write ``<name>/definition.yaml``.

    Returns:
        Path of the written definition

    Raises:
        SpkError: If options are missing or the template cannot be fetched/read
    """
    validate_values(config, opts)
    opts.source = opts.source or construct_source(config)

    source_path = validate_remote_source(
        SourceInformation(opts.source, opts.template, opts.version), templates_path
    )
    template_dir = source_path / opts.template
    vartf = template_dir / VARIABLES_TF
    if not vartf.is_file():
        raise build_error(
            ErrorStatusCode.ENV_SETTING_ERR,
            ErrorParam("infra-err-tf-path-not-found", [VARIABLES_TF, str(template_dir)]),
        )

    env_dir = Path(opts.name)
    env_dir.mkdir(parents=True, exist_ok=True)
    for path in template_dir.iterdir():
        if path.is_file() and path.name != TERRAFORM_TFVARS:
            (env_dir / path.name).write_bytes(path.read_bytes())
    logger.info(f"Terraform template files copied from {template_dir}")

    definition_file = write_definition(opts)
    remove_template_files(env_dir)
    return definition_file


__all__ = [
    "ScaffoldOptions",
    "construct_source",
    "generate_cluster_definition",
    "parse_backend_tfvars",
    "parse_variables_tf",
    "remove_template_files",
    "scaffold",
    "validate_values",
    "write_definition",
]
