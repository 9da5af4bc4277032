"""Hierarchical Terraform definitions.

A deployment project keeps a parent ``definition.yaml`` with shared
settings and one leaf folder per cluster whose ``definition.yaml`` only
overrides what differs:

    discovery-service/definition.yaml        source, template, version, variables
    discovery-service/west/definition.yaml   version: v0.0.2, variables: {cluster_name: ...}

Merging is leaf-wins and flat: a leaf key replaces the parent's value,
parent-only keys are kept, nothing nested is merged.

Public API:
    DefinitionYamlExistence: Which of parent/leaf carry a definition
    SourceInformation: Template source, path and version
    load_definition: Read a definition file from a directory
    merge_variables: Leaf-wins merge of two variable sets
    generate_tfvars: Render variables as tfvars lines
    validate_definition: Classify parent/leaf definition presence
    validate_template_sources: Resolve source/template/version
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from spk.config_manager import SpkConfig, resolve_env_references
from spk.errors import ErrorParam, ErrorStatusCode, build_error
from spk.log_sanitizer import LogSanitizer
from spk.modules.infra_common import DEFINITION_JSON, DEFINITION_YAML

logger = logging.getLogger(__name__)


class DefinitionYamlExistence(Enum):
    """Which of the parent and leaf folders carry a definition."""

    BOTH_EXIST = "both-exist"
    PARENT_ONLY = "parent-only"
    LEAF_ONLY = "leaf-only"


@dataclass
class SourceInformation:
    """Where a definition's Terraform template comes from."""

    source: str | None = None
    template: str | None = None
    version: str | None = None


def _definition_file(directory: str | Path) -> Path | None:
    for name in (DEFINITION_YAML, DEFINITION_JSON):
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


def _resolve_env(value: Any) -> Any:
    if isinstance(value, str):
        return resolve_env_references(value)
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    return value


def load_definition(directory: str | Path) -> dict[str, Any] | None:
    """Read the definition in ``directory``.

    ``${env:NAME}`` references in values are resolved from the environment.

    Returns:
        Parsed definition, or None when the folder has none

    Raises:
        SpkError: ``infra-defn-yaml-parse-err`` if the file is malformed
    """
    path = _definition_file(directory)
    if path is None:
        return None

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise build_error(
            ErrorStatusCode.INCORRECT_DEFINITION,
            ErrorParam("infra-defn-yaml-parse-err", [str(path)]),
            e,
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise build_error(
            ErrorStatusCode.INCORRECT_DEFINITION,
            ErrorParam("infra-defn-yaml-parse-err", [str(path)]),
        )
    return _resolve_env(data)


def merge_variables(
    parent: dict[str, Any] | None, leaf: dict[str, Any] | None
) -> dict[str, Any]:
    """Merge leaf variables over parent variables.

    Returns a new mapping: parent keys in their order (with leaf values
    where the leaf sets them), then keys only the leaf has, in leaf order.
    Neither input is modified.
    """
    merged = dict(parent or {})
    for key, value in (leaf or {}).items():
        merged[key] = value
    return merged


def _tfvars_value(value: Any) -> str:
    if isinstance(value, dict):
        if not value:
            return "{}"
        fields = ", ".join(f"{k} = {_tfvars_value(v)}" for k, v in value.items())
        return "{ " + fields + " }"
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = str(value).lower()
    else:
        text = str(value)
    return '"' + text.replace('"', '\\"') + '"'


def generate_tfvars(variables: dict[str, Any] | None) -> list[str]:
    """Render variables as ``key = "value"`` tfvars lines.

    Double quotes inside values are escaped. Mapping values are rendered as
    HCL objects on one line.
    """
    if not variables:
        return []
    return [f"{key} = {_tfvars_value(value)}" for key, value in variables.items()]


def validate_definition(
    parent_dir: str | Path, leaf_dir: str | Path
) -> DefinitionYamlExistence:
    """Classify which of the parent and leaf folders have a definition.

    Raises:
        SpkError: ``infra-defn-yaml-not-found`` when neither does
    """
    parent_exists = _definition_file(parent_dir) is not None
    leaf_exists = _definition_file(leaf_dir) is not None

    if parent_exists and leaf_exists:
        logger.info(f"{DEFINITION_YAML} found in parent {parent_dir} and leaf {leaf_dir}")
        return DefinitionYamlExistence.BOTH_EXIST
    if parent_exists:
        logger.info(f"{DEFINITION_YAML} found only in parent {parent_dir}")
        return DefinitionYamlExistence.PARENT_ONLY
    if leaf_exists:
        logger.info(f"{DEFINITION_YAML} found only in leaf {leaf_dir}")
        return DefinitionYamlExistence.LEAF_ONLY

    raise build_error(
        ErrorStatusCode.ENV_SETTING_ERR,
        ErrorParam(
            "infra-defn-yaml-not-found",
            [str(leaf_dir), str(parent_dir)],
        ),
    )


def _source_fields(definition: dict[str, Any] | None) -> SourceInformation:
    definition = definition or {}
    return SourceInformation(
        source=definition.get("source") or None,
        template=definition.get("template") or None,
        version=definition.get("version") or None,
    )


def validate_template_sources(
    existence: DefinitionYamlExistence,
    parent_dir: str | Path,
    leaf_dir: str | Path,
    config: SpkConfig | None = None,
) -> SourceInformation:
    """Resolve the template source, path and version for a leaf.

    Each field the leaf sets overrides the parent's. When no definition sets
    ``source`` and the config has an infra repository and access token, the
    source is that repository with the token embedded.

    Raises:
        SpkError: ``infra-defn-yaml-invalid`` if a field is still missing
    """
    parent = _source_fields(
        load_definition(parent_dir) if existence != DefinitionYamlExistence.LEAF_ONLY else None
    )
    leaf = _source_fields(
        load_definition(leaf_dir) if existence != DefinitionYamlExistence.PARENT_ONLY else None
    )

    info = SourceInformation(
        source=leaf.source or parent.source,
        template=leaf.template or parent.template,
        version=leaf.version or parent.version,
    )

    devops = config.azure_devops if config else None
    if not info.source and devops and devops.access_token and devops.infra_repository:
        info.source = f"https://spk:{devops.access_token}@{devops.infra_repository}"
        logger.info("Using infrastructure repository from spk config as template source")

    if not (info.source and info.template and info.version):
        raise build_error(
            ErrorStatusCode.INCORRECT_DEFINITION,
            ErrorParam(
                "infra-defn-yaml-invalid",
                [
                    LogSanitizer.safe_git_url(info.source or ""),
                    info.template or "",
                    info.version or "",
                ],
            ),
        )

    logger.info(
        f"Template source: {LogSanitizer.safe_git_url(info.source)}, "
        f"template: {info.template}, version: {info.version}"
    )
    return info


__all__ = [
    "DefinitionYamlExistence",
    "SourceInformation",
    "generate_tfvars",
    "load_definition",
    "merge_variables",
    "validate_definition",
    "validate_template_sources",
]
