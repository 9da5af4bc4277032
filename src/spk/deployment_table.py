"""Deployment records in Azure Table Storage.

Each pipeline stage writes to one row per deployment:

- p1 (source -> ACR build) creates the row with image tag, service and commit
- p2 (ACR -> HLD release) finds rows by image tag and records env/HLD commit
- p3 (HLD -> manifest build) finds rows by HLD commit (or PR) and records the
  manifest build and commit

When a later stage runs for a row that already carries a different value
for that stage (e.g. the same image promoted to a second environment), the
row is cloned under a new row key so each deployment keeps its own row.

Public API:
    DeploymentRecord: One table row
    DeploymentFilters: Query filters
    DeploymentTable: Query/insert/update access to the table
    DeploymentTableError: Storage operation failed
    add_src_to_acr_pipeline, update_acr_to_hld_pipeline,
    update_hld_to_manifest_pipeline, update_manifest_commit_id: Stage writers
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import AzureError
from azure.data.tables import TableClient, TableServiceClient, UpdateMode

from spk.pipelines import parse_timestamp

logger = logging.getLogger(__name__)


class DeploymentTableError(Exception):
    """Azure Table Storage operation failed."""

    pass


# Python attribute -> table column
WIRE_NAMES: dict[str, str] = {
    "partition_key": "PartitionKey",
    "row_key": "RowKey",
    "p1": "p1",
    "p2": "p2",
    "p3": "p3",
    "service": "service",
    "commit_id": "commitId",
    "image_tag": "imageTag",
    "env": "env",
    "hld_commit_id": "hldCommitId",
    "manifest_commit_id": "manifestCommitId",
    "pr": "pr",
    "source_repo": "sourceRepo",
    "hld_repo": "hldRepo",
    "manifest_repo": "manifestRepo",
}


@dataclass
class DeploymentRecord:
    """One deployment row. Every stage field beyond source is optional."""

    partition_key: str
    row_key: str
    p1: str | None = None
    p2: str | None = None
    p3: str | None = None
    service: str | None = None
    commit_id: str | None = None
    image_tag: str | None = None
    env: str | None = None
    hld_commit_id: str | None = None
    manifest_commit_id: str | None = None
    pr: str | None = None
    source_repo: str | None = None
    hld_repo: str | None = None
    manifest_repo: str | None = None
    timestamp: datetime | None = None

    @classmethod
    def from_entity(cls, entity: dict[str, Any]) -> "DeploymentRecord":
        """Create from a table entity."""
        values: dict[str, Any] = {}
        for attr, column in WIRE_NAMES.items():
            value = entity.get(column)
            values[attr] = str(value) if value not in (None, "") else None

        metadata = getattr(entity, "metadata", None) or {}
        values["timestamp"] = parse_timestamp(
            metadata.get("timestamp") or entity.get("Timestamp")
        )
        values["partition_key"] = values["partition_key"] or ""
        values["row_key"] = values["row_key"] or ""
        return cls(**values)


@dataclass
class DeploymentFilters:
    """Optional query filters; None or empty means unfiltered."""

    env: str | None = None
    image_tag: str | None = None
    build_id: str | None = None
    commit_id: str | None = None
    service: str | None = None
    deployment_id: str | None = None

    # filter attribute -> (table column, lower-case the value)
    COLUMNS = {
        "env": ("env", True),
        "image_tag": ("imageTag", True),
        "build_id": ("p1", False),
        "commit_id": ("commitId", True),
        "service": ("service", False),
        "deployment_id": ("RowKey", False),
    }

    def clauses(self) -> list[tuple[str, str]]:
        """Return (column, value) pairs for the filters that are set."""
        result = []
        for attr, (column, lower) in self.COLUMNS.items():
            value = getattr(self, attr)
            if value:
                result.append((column, value.lower() if lower else value))
        return result


def get_row_key() -> str:
    """Generate a 12 character row key."""
    return str(uuid.uuid4()).replace("-", "", 1)[:12]


class DeploymentTable:
    """Access to the deployments table of one storage account."""

    ENDPOINT = "https://{account}.table.core.windows.net"

    def __init__(
        self,
        account_name: str,
        account_key: str,
        table_name: str,
        partition_key: str,
        client: TableClient | None = None,
    ):
        self.account_name = account_name
        self.table_name = table_name
        self.partition_key = partition_key
        self._account_key = account_key
        self._client = client

    def __repr__(self) -> str:
        return (
            f"DeploymentTable(account_name={self.account_name!r}, "
            f"table_name={self.table_name!r}, partition_key={self.partition_key!r})"
        )

    @property
    def client(self) -> TableClient:
        if self._client is None:
            self._client = TableClient(
                endpoint=self.ENDPOINT.format(account=self.account_name),
                table_name=self.table_name,
                credential=AzureNamedKeyCredential(self.account_name, self._account_key),
            )
        return self._client

    @classmethod
    def create_table_if_not_exists(
        cls, account_name: str, account_key: str, table_name: str
    ) -> bool:
        """Create the table when missing.

        Returns:
            True if the table was created, False if it already existed

        Raises:
            DeploymentTableError: If the service call fails
        """
        service = TableServiceClient(
            endpoint=cls.ENDPOINT.format(account=account_name),
            credential=AzureNamedKeyCredential(account_name, account_key),
        )
        try:
            existing = [t.name for t in service.query_tables(f"TableName eq '{table_name}'")]
            if table_name in existing:
                logger.info(f"Table {table_name} already exists in {account_name}")
                return False
            service.create_table(table_name)
            logger.info(f"Created table {table_name} in {account_name}")
            return True
        except AzureError as e:
            raise DeploymentTableError(f"Failed to create table {table_name}: {e}") from e

    def query_records(self, filters: DeploymentFilters | None = None) -> list[DeploymentRecord]:
        """Query deployment rows in this partition matching the filters.

        Raises:
            DeploymentTableError: If the query fails
        """
        clauses = [("PartitionKey", self.partition_key)]
        clauses.extend((filters or DeploymentFilters()).clauses())
        entities = self._query(clauses)
        return [DeploymentRecord.from_entity(e) for e in entities]

    def find_matching(self, column: str, value: str) -> list[dict[str, Any]]:
        """Return raw entities in this partition where ``column == value``."""
        return self._query([("PartitionKey", self.partition_key), (column, value)])

    def insert(self, entry: dict[str, Any]) -> dict[str, Any]:
        try:
            self.client.create_entity(entity=_clean(entry))
        except AzureError as e:
            raise DeploymentTableError(f"Failed to insert {entry.get('RowKey')}: {e}") from e
        return entry

    def update(self, entry: dict[str, Any]) -> dict[str, Any]:
        try:
            self.client.update_entity(entity=_clean(entry), mode=UpdateMode.REPLACE)
        except AzureError as e:
            raise DeploymentTableError(f"Failed to update {entry.get('RowKey')}: {e}") from e
        return entry

    def delete(self, entry: dict[str, Any]) -> None:
        try:
            self.client.delete_entity(
                partition_key=entry["PartitionKey"], row_key=entry["RowKey"]
            )
        except AzureError as e:
            raise DeploymentTableError(f"Failed to delete {entry.get('RowKey')}: {e}") from e

    def _query(self, clauses: list[tuple[str, str]]) -> list[dict[str, Any]]:
        query_filter = " and ".join(f"{column} eq @v{i}" for i, (column, _) in enumerate(clauses))
        parameters = {f"v{i}": value for i, (_, value) in enumerate(clauses)}
        logger.debug(f"Querying {self.table_name}: {query_filter} {parameters}")
        try:
            return list(self.client.query_entities(query_filter, parameters=parameters))
        except AzureError as e:
            raise DeploymentTableError(f"Failed to query {self.table_name}: {e}") from e


def _clean(entry: dict[str, Any]) -> dict[str, Any]:
    """Drop None values, which the table service rejects."""
    return {k: v for k, v in entry.items() if v is not None}


def _lower(value: str | None) -> str | None:
    return value.lower() if value else value


def _matches(entry: dict[str, Any], column: str, value: str | None) -> bool:
    """An unset column matches anything; a set column must equal value."""
    current = entry.get(column)
    return not current or current == _lower(value)


def add_src_to_acr_pipeline(
    table: DeploymentTable,
    pipeline_id: str,
    image_tag: str,
    service_name: str,
    commit_id: str,
    repository: str | None = None,
) -> dict[str, Any]:
    """Record a source -> ACR build as a new deployment row."""
    entry: dict[str, Any] = {
        "PartitionKey": table.partition_key,
        "RowKey": get_row_key(),
        "p1": pipeline_id,
        "imageTag": image_tag,
        "service": service_name,
        "commitId": commit_id,
    }
    if repository:
        entry["sourceRepo"] = repository.lower()
    table.insert(entry)
    logger.info("Added first pipeline details to the database")
    return entry


def update_acr_to_hld_pipeline(
    table: DeploymentTable,
    pipeline_id: str,
    image_tag: str,
    hld_commit_id: str,
    env: str,
    pr: str | None = None,
    repository: str | None = None,
) -> dict[str, Any]:
    """Record an ACR -> HLD release against the rows for ``image_tag``."""
    candidate: dict[str, Any] | None = None
    for entry in table.find_matching("imageTag", image_tag):
        candidate = entry
        if (
            _matches(entry, "p2", pipeline_id)
            and _matches(entry, "hldCommitId", hld_commit_id)
            and _matches(entry, "env", env)
        ):
            _set_p2(entry, pipeline_id, hld_commit_id, env, pr, repository)
            table.update(entry)
            logger.info("Updated image tag release details for its corresponding pipeline")
            return entry

    if candidate is not None:
        new_entry = dict(candidate)
        _set_p2(new_entry, pipeline_id, hld_commit_id, env, pr, repository)
        new_entry["RowKey"] = get_row_key()
        new_entry["p3"] = None
        new_entry["manifestCommitId"] = None
        table.insert(new_entry)
        logger.info(f"Added new p2 entry for imageTag {image_tag} by finding a similar entry")
        return new_entry

    new_entry = {
        "PartitionKey": table.partition_key,
        "RowKey": get_row_key(),
        "imageTag": image_tag.lower(),
    }
    _set_p2(new_entry, pipeline_id, hld_commit_id, env, pr, repository)
    table.insert(new_entry)
    logger.info(f"Added new p2 entry for imageTag {image_tag} - no matching entry was found.")
    return new_entry


def _set_p2(
    entry: dict[str, Any],
    pipeline_id: str,
    hld_commit_id: str,
    env: str,
    pr: str | None,
    repository: str | None,
) -> None:
    entry["p2"] = pipeline_id.lower()
    entry["hldCommitId"] = hld_commit_id.lower()
    entry["env"] = env.lower()
    if pr:
        entry["pr"] = pr.lower()
    if repository:
        entry["hldRepo"] = repository.lower()


def update_hld_to_manifest_pipeline(
    table: DeploymentTable,
    hld_commit_id: str,
    pipeline_id: str,
    manifest_commit_id: str | None = None,
    pr: str | None = None,
    repository: str | None = None,
) -> dict[str, Any]:
    """Record an HLD -> manifest build against the rows for ``hld_commit_id``.

    When nothing matches the HLD commit and a PR is given, rows are looked
    up by PR instead (the HLD commit of a merged PR differs from the one the
    release pushed).
    """
    entries = table.find_matching("hldCommitId", hld_commit_id)
    if not entries and pr:
        entries = table.find_matching("pr", pr)

    candidate: dict[str, Any] | None = None
    for entry in entries:
        candidate = entry
        if _matches(entry, "p3", pipeline_id) and _matches(
            entry, "manifestCommitId", manifest_commit_id
        ):
            entry["p3"] = pipeline_id.lower()
            if manifest_commit_id:
                entry["manifestCommitId"] = manifest_commit_id.lower()
            if repository:
                entry["manifestRepo"] = repository.lower()
            table.update(entry)
            logger.info("Updated third pipeline details for its corresponding pipeline")
            return entry

    if candidate is not None:
        new_entry = dict(candidate)
        new_entry["RowKey"] = get_row_key()
    else:
        new_entry = {"PartitionKey": table.partition_key, "RowKey": get_row_key()}

    new_entry["p3"] = pipeline_id.lower()
    new_entry["hldCommitId"] = hld_commit_id.lower()
    if manifest_commit_id:
        new_entry["manifestCommitId"] = manifest_commit_id.lower()
    if pr:
        new_entry["pr"] = pr.lower()
    if repository:
        new_entry["manifestRepo"] = repository.lower()
    table.insert(new_entry)
    found = "by finding a similar entry" if candidate is not None else "- no matching entry was found."
    logger.info(f"Added new p3 entry for hldCommitId {hld_commit_id} {found}")
    return new_entry


def update_manifest_commit_id(
    table: DeploymentTable,
    pipeline_id: str,
    manifest_commit_id: str,
    repository: str | None = None,
) -> dict[str, Any] | None:
    """Set the manifest commit on the row of HLD -> manifest build ``pipeline_id``.

    Returns:
        Updated entry, or None when no row has that build
    """
    entries = table.find_matching("p3", pipeline_id)
    if not entries:
        logger.error(f"No manifest generation found to update manifest commit {manifest_commit_id}")
        return None

    # There should only be one row per manifest build
    entry = entries[0]
    entry["manifestCommitId"] = manifest_commit_id.lower()
    if repository:
        entry["manifestRepo"] = repository.lower()
    table.update(entry)
    logger.info(f"Update manifest commit Id {manifest_commit_id} for pipeline Id {pipeline_id}")
    return entry


__all__ = [
    "DeploymentFilters",
    "DeploymentRecord",
    "DeploymentTable",
    "DeploymentTableError",
    "add_src_to_acr_pipeline",
    "get_row_key",
    "update_acr_to_hld_pipeline",
    "update_hld_to_manifest_pipeline",
    "update_manifest_commit_id",
]
