"""Command groups for spk CLI."""

from spk.commands.config import config_group, init_command
from spk.commands.deployment import deployment_group
from spk.commands.docs import docs_group
from spk.commands.infra import infra_group

__all__ = ["config_group", "deployment_group", "docs_group", "infra_group", "init_command"]
