"""Shared names and paths for Terraform scaffolding and generation."""

import re
from pathlib import Path

DEFINITION_YAML = "definition.yaml"
# Older projects carry their definition as JSON
DEFINITION_JSON = "definition.json"
VARIABLES_TF = "variables.tf"
BACKEND_TFVARS = "backend.tfvars"
TERRAFORM_TFVARS = "terraform.tfvars"
SPK_TFVARS = "spk.tfvars"
DEFAULT_VAR_VALUE = "<insert value>"

SPK_TEMPLATES_PATH = Path.home() / ".spk" / "templates"

_HOST_PREFIX = re.compile(r"^(.*?)\.(com|net)")
_PUNCTUATION = re.compile(r"[^\w\s]")


def get_source_folder_name_from_url(source: str) -> str:
    """Cache folder name for a template source URL.

    Everything up to the first ``.com`` or ``.net`` is dropped (scheme,
    credentials and host), remaining punctuation becomes ``_`` and the result
    is lower-cased:
    ``https://github.com/microsoft/bedrock.git`` -> ``_microsoft_bedrock_git``.
    """
    folder = _HOST_PREFIX.sub("", source, count=1)
    return _PUNCTUATION.sub("_", folder).lower()


__all__ = [
    "BACKEND_TFVARS",
    "DEFAULT_VAR_VALUE",
    "DEFINITION_JSON",
    "DEFINITION_YAML",
    "SPK_TEMPLATES_PATH",
    "SPK_TFVARS",
    "TERRAFORM_TFVARS",
    "VARIABLES_TF",
    "get_source_folder_name_from_url",
]
