"""Onboard the Azure Storage table used for deployment introspection.

Onboarding runs a fixed sequence of steps that share one OnboardContext:

1. validate the storage account/table names and required values
2. make sure the storage account exists (created when missing)
3. fetch the account access key
4. create the deployments table when missing
5. save the storage coordinates to the spk config file

A failing step stops the sequence. Either way the context is written to
``spk-setup.log`` with secrets masked, ending in ``Status: Completed`` or
``Error: ...`` followed by ``Status: Incomplete``.

Public API:
    OnboardValues: User-supplied values
    OnboardContext: State accumulated across steps
    onboard: Run all steps and write the setup log
    STEPS: Ordered (name, step) pairs
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import Sku, StorageAccountCreateParameters

from spk.config_manager import ConfigError, ConfigManager
from spk.deployment_table import DeploymentTable, DeploymentTableError
from spk.errors import ErrorParam, ErrorStatusCode, SpkError, build_error
from spk.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

SETUP_LOG = Path("spk-setup.log")

STORAGE_NAME_PATTERN = re.compile(r"^[a-z0-9]{3,24}$")
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")


@dataclass
class OnboardValues:
    """Values supplied to ``spk deployment onboard``."""

    storage_account_name: str | None = None
    table_name: str | None = None
    partition_key: str | None = None
    resource_group: str | None = None
    subscription_id: str | None = None
    location: str | None = None
    tenant_id: str | None = None
    service_principal_id: str | None = None
    service_principal_secret: str | None = None

    REQUIRED = (
        "storage_account_name",
        "table_name",
        "partition_key",
        "resource_group",
        "subscription_id",
    )

    def missing(self) -> list[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]


@dataclass
class OnboardContext:
    """State accumulated across onboarding steps."""

    values: OnboardValues
    config_path: str | None = None
    client: StorageManagementClient | None = None
    account_created: bool = False
    account_key: str | None = None
    table_created: bool = False
    completed_steps: list[str] = field(default_factory=list)
    error: BaseException | None = None


def _credential(values: OnboardValues):
    if values.service_principal_id and values.service_principal_secret and values.tenant_id:
        return ClientSecretCredential(
            tenant_id=values.tenant_id,
            client_id=values.service_principal_id,
            client_secret=values.service_principal_secret,
        )
    return DefaultAzureCredential()


def validate_values(ctx: OnboardContext) -> None:
    values = ctx.values
    missing = values.missing()
    if missing:
        raise build_error(
            ErrorStatusCode.VALIDATION_ERR,
            ErrorParam("introspect-onboard-cmd-missing-values", [", ".join(missing)]),
        )
    if not STORAGE_NAME_PATTERN.match(values.storage_account_name):
        raise build_error(
            ErrorStatusCode.VALIDATION_ERR,
            ErrorParam("introspect-onboard-cmd-invalid-storage-name", [values.storage_account_name]),
        )
    if not TABLE_NAME_PATTERN.match(values.table_name):
        raise build_error(
            ErrorStatusCode.VALIDATION_ERR,
            ErrorParam("introspect-onboard-cmd-invalid-table-name", [values.table_name]),
        )


def ensure_storage_account(ctx: OnboardContext) -> None:
    values = ctx.values
    if ctx.client is None:
        ctx.client = StorageManagementClient(_credential(values), values.subscription_id)

    try:
        ctx.client.storage_accounts.get_properties(
            values.resource_group, values.storage_account_name
        )
        logger.info(f"Storage account {values.storage_account_name} already exists")
        return
    except ResourceNotFoundError:
        pass

    if not values.location:
        raise build_error(
            ErrorStatusCode.VALIDATION_ERR,
            ErrorParam("introspect-onboard-cmd-location-missing", [values.storage_account_name]),
        )

    logger.info(
        f"Creating storage account {values.storage_account_name} "
        f"in {values.resource_group} ({values.location})"
    )
    parameters = StorageAccountCreateParameters(
        sku=Sku(name="Standard_LRS"), kind="StorageV2", location=values.location
    )
    ctx.client.storage_accounts.begin_create(
        values.resource_group, values.storage_account_name, parameters
    ).result()
    ctx.account_created = True


def fetch_account_key(ctx: OnboardContext) -> None:
    values = ctx.values
    keys = ctx.client.storage_accounts.list_keys(
        values.resource_group, values.storage_account_name
    )
    key_list = list(keys.keys or [])
    if not key_list or not key_list[0].value:
        raise build_error(
            ErrorStatusCode.ENV_SETTING_ERR,
            ErrorParam(
                "introspect-onboard-cmd-no-key",
                [values.storage_account_name, values.resource_group],
            ),
        )
    # Never log the key itself
    ctx.account_key = key_list[0].value
    logger.info(f"Retrieved access key for storage account {values.storage_account_name}")


def create_table(ctx: OnboardContext) -> None:
    ctx.table_created = DeploymentTable.create_table_if_not_exists(
        ctx.values.storage_account_name, ctx.account_key, ctx.values.table_name
    )


def save_configuration(ctx: OnboardContext) -> None:
    values = ctx.values
    ConfigManager.update_introspection(
        ctx.config_path,
        account_name=values.storage_account_name,
        table_name=values.table_name,
        partition_key=values.partition_key,
        key=ctx.account_key,
        resource_group=values.resource_group,
        subscription_id=values.subscription_id,
        tenant_id=values.tenant_id,
        service_principal_id=values.service_principal_id,
        service_principal_secret=values.service_principal_secret,
    )
    logger.info("Saved introspection storage settings to config")


STEPS: list[tuple[str, Callable[[OnboardContext], None]]] = [
    ("validate", validate_values),
    ("storage-account", ensure_storage_account),
    ("access-key", fetch_account_key),
    ("table", create_table),
    ("config", save_configuration),
]


def setup_log_lines(ctx: OnboardContext) -> list[str]:
    """Key=value lines describing the onboarding outcome, secrets masked."""
    values = ctx.values
    lines = [
        f"storage_account_name={values.storage_account_name or ''}",
        f"storage_table_name={values.table_name or ''}",
        f"storage_partition_key={values.partition_key or ''}",
        f"storage_resource_group={values.resource_group or ''}",
        f"storage_location={values.location or ''}",
        f"subscription_id={values.subscription_id or ''}",
        f"tenant_id={values.tenant_id or ''}",
        f"service_principal_id={values.service_principal_id or ''}",
        f"service_principal_secret={LogSanitizer.mask_secret(values.service_principal_secret)}",
        f"storage_account_key={LogSanitizer.mask_secret(ctx.account_key)}",
        f"storage_account_created={'yes' if ctx.account_created else 'no'}",
        f"storage_table_created={'yes' if ctx.table_created else 'no'}",
        f"completed_steps={','.join(ctx.completed_steps)}",
    ]
    if ctx.error is not None:
        message = ctx.error.message if isinstance(ctx.error, SpkError) else str(ctx.error)
        lines.append(f"Error: {LogSanitizer.sanitize(message)}")
        lines.append("Status: Incomplete")
    else:
        lines.append("Status: Completed")
    return lines


def write_setup_log(ctx: OnboardContext, log_path: Path = SETUP_LOG) -> Path:
    log_path.write_text("\n".join(setup_log_lines(ctx)) + "\n")
    logger.debug(f"Wrote setup log to {log_path}")
    return log_path


def onboard(
    values: OnboardValues,
    config_path: str | None = None,
    client: StorageManagementClient | None = None,
    log_path: Path = SETUP_LOG,
) -> OnboardContext:
    """Run every onboarding step in order.

    Args:
        values: User-supplied values
        config_path: Config file to update (default ~/.spk/config.toml)
        client: Storage management client (created from credentials when None)
        log_path: Where to write the setup log

    Returns:
        Context after all steps completed

    Raises:
        SpkError: ``introspect-onboard-cmd-failed`` wrapping the failing step
    """
    ctx = OnboardContext(values=values, config_path=config_path, client=client)
    try:
        for name, step in STEPS:
            logger.debug(f"Onboard step: {name}")
            step(ctx)
            ctx.completed_steps.append(name)
    except (SpkError, AzureError, DeploymentTableError, ConfigError) as e:
        ctx.error = e
        raise build_error(ErrorStatusCode.CMD_EXE_ERR, "introspect-onboard-cmd-failed", e) from e
    finally:
        write_setup_log(ctx, log_path)
    return ctx


__all__ = [
    "STEPS",
    "OnboardContext",
    "OnboardValues",
    "onboard",
    "setup_log_lines",
    "write_setup_log",
]
