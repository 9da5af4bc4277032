"""Generate Terraform deployments from parent/leaf definitions.

For a leaf folder under a parent, generation produces
``<parent>-generated/<leaf>`` containing:

- the template's Terraform files (without ``terraform.tfvars`` and
  ``backend.tfvars``), with relative module sources rewritten to
  ``git::<source>//<path>/?ref=<version>`` so they resolve outside the
  template repository
- ``spk.tfvars`` from the merged variables
- ``backend.tfvars`` from the merged backend settings, when any

Public API:
    generate: Validate, fetch the template and generate one leaf
    generate_config: Write the generated folder for resolved sources
    get_parent_generated_folder: ``<parent>-generated`` location
    module_source_modify: Rewrite relative module sources in .tf text
"""

import logging
import posixpath
import re
import shutil
from pathlib import Path

from spk.config_manager import SpkConfig
from spk.errors import ErrorParam, ErrorStatusCode, build_error
from spk.modules.definition import (
    DefinitionYamlExistence,
    SourceInformation,
    generate_tfvars,
    load_definition,
    merge_variables,
    validate_definition,
    validate_template_sources,
)
from spk.modules.infra_common import (
    BACKEND_TFVARS,
    SPK_TEMPLATES_PATH,
    SPK_TFVARS,
    TERRAFORM_TFVARS,
    get_source_folder_name_from_url,
)
from spk.modules.template_source import validate_remote_source

logger = logging.getLogger(__name__)

# source = "../../azure/aks-gitops" (relative module sources only)
MODULE_SOURCE = re.compile(r"""^(\s*)source\s*=\s*["'](\.{1,2}/[^"']*)["'](.*)$""")


def get_parent_generated_folder(parent_dir: str | Path, output_path: str | Path | None = None) -> Path:
    """``<parent>-generated`` next to the parent, or inside ``output_path``."""
    parent = Path(parent_dir)
    if not parent.name:
        parent = parent.resolve()
    base = Path(output_path) if output_path else parent.parent
    return base / f"{parent.name}-generated"


def _leaf_relative(parent_dir: Path, leaf_dir: Path) -> Path | None:
    parent = parent_dir.resolve()
    leaf = leaf_dir.resolve()
    if parent == leaf:
        return None
    try:
        return leaf.relative_to(parent)
    except ValueError:
        return Path(leaf.name)


def is_relative_module_source(line: str) -> bool:
    return MODULE_SOURCE.match(line) is not None


def module_source_modify(source_info: SourceInformation, content: str, base_dir: str) -> str:
    """Rewrite relative module sources against the template repository.

    Args:
        source_info: Template source and version
        content: Contents of a .tf file
        base_dir: Folder of that file within the template repository

    Returns:
        Rewritten content; lines without a relative source are unchanged
    """
    lines = []
    for line in content.splitlines():
        match = MODULE_SOURCE.match(line)
        if match:
            indent, relative, rest = match.groups()
            path = posixpath.normpath(posixpath.join(base_dir, relative)).lstrip("/")
            line = (
                f'{indent}source = "git::{source_info.source}//{path}/'
                f'?ref={source_info.version}"{rest}'
            )
        lines.append(line)
    return "\n".join(lines) + "\n"


def inspect_generated_sources(directory: Path, source_info: SourceInformation) -> None:
    """Rewrite module sources in every .tf file under ``directory``."""
    for tf_file in sorted(directory.rglob("*.tf")):
        relative_dir = tf_file.parent.relative_to(directory).as_posix()
        base_dir = source_info.template
        if relative_dir != ".":
            base_dir = posixpath.join(base_dir, relative_dir)
        content = tf_file.read_text()
        if not any(is_relative_module_source(line) for line in content.splitlines()):
            continue
        tf_file.write_text(module_source_modify(source_info, content, base_dir))
        logger.debug(f"Rewrote module sources in {tf_file}")


def copy_tf_template(template_dir: Path, target_dir: Path) -> None:
    """Copy template files, leaving out variable files the generator writes.

    Raises:
        SpkError: ``infra-err-locate-tf-env`` if the template cannot be copied
    """
    try:
        shutil.copytree(
            template_dir,
            target_dir,
            ignore=shutil.ignore_patterns(TERRAFORM_TFVARS, BACKEND_TFVARS, ".git"),
            dirs_exist_ok=True,
        )
    except OSError as e:
        raise build_error(
            ErrorStatusCode.ENV_SETTING_ERR,
            ErrorParam("infra-err-locate-tf-env", [str(template_dir)]),
            e,
        ) from e
    logger.info(f"Terraform template files copied from {template_dir}")


def write_tfvars(path: Path, lines: list[str]) -> None:
    path.write_text("\n".join(lines) + ("\n" if lines else ""))
    logger.info(f"Wrote {path}")


def generate_config(
    parent_dir: str | Path,
    leaf_dir: str | Path,
    existence: DefinitionYamlExistence,
    source_info: SourceInformation,
    output_path: str | Path | None = None,
    templates_path: Path | None = None,
) -> Path:
    """Write the generated Terraform folder for one leaf.

    Returns:
        The generated folder

    Raises:
        SpkError: If the template folder is missing or files cannot be written
    """
    parent_dir = Path(parent_dir)
    leaf_dir = Path(leaf_dir)
    source_path = (templates_path or SPK_TEMPLATES_PATH) / get_source_folder_name_from_url(
        source_info.source
    )
    template_dir = source_path / source_info.template
    if not template_dir.is_dir():
        raise build_error(
            ErrorStatusCode.ENV_SETTING_ERR,
            ErrorParam("infra-err-locate-tf-env", [str(template_dir)]),
        )

    parent_def = (
        load_definition(parent_dir) if existence != DefinitionYamlExistence.LEAF_ONLY else None
    ) or {}
    leaf_def = (
        load_definition(leaf_dir) if existence != DefinitionYamlExistence.PARENT_ONLY else None
    ) or {}

    target = get_parent_generated_folder(parent_dir, output_path)
    relative = _leaf_relative(parent_dir, leaf_dir)
    if relative is not None:
        target = target / relative

    try:
        target.mkdir(parents=True, exist_ok=True)
        copy_tf_template(template_dir, target)
        inspect_generated_sources(target, source_info)

        variables = merge_variables(parent_def.get("variables"), leaf_def.get("variables"))
        write_tfvars(target / SPK_TFVARS, generate_tfvars(variables))

        backend = merge_variables(parent_def.get("backend"), leaf_def.get("backend"))
        if backend:
            write_tfvars(target / BACKEND_TFVARS, generate_tfvars(backend))
    except OSError as e:
        raise build_error(
            ErrorStatusCode.FILE_IO_ERR,
            ErrorParam("infra-err-locate-tf-env", [str(target)]),
            e,
        ) from e

    logger.info(f"Generated Terraform deployment in {target}")
    return target


def generate(
    parent_dir: str | Path,
    leaf_dir: str | Path,
    output_path: str | Path | None = None,
    config: SpkConfig | None = None,
    templates_path: Path | None = None,
) -> Path:
    """Generate the Terraform deployment of ``leaf_dir`` under ``parent_dir``.

    Raises:
        SpkError: If definitions are missing or invalid, or the template
            cannot be fetched or copied
    """
    existence = validate_definition(parent_dir, leaf_dir)
    source_info = validate_template_sources(existence, parent_dir, leaf_dir, config)
    validate_remote_source(source_info, templates_path)
    return generate_config(
        parent_dir, leaf_dir, existence, source_info, output_path, templates_path
    )


__all__ = [
    "copy_tf_template",
    "generate",
    "generate_config",
    "get_parent_generated_folder",
    "inspect_generated_sources",
    "module_source_modify",
]
