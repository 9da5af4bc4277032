"""
Shared test fixtures and configuration for spk CLI tests.

This module provides common fixtures used across all test types:
- Deployment table rows and pipeline responses loaded from tests/fixtures
- A DeploymentTable backed by an in-memory fake TableClient
- Pipeline and repository fakes serving the fixture data
"""

import json
import re
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from spk.deployment_table import DeploymentTable
from spk.pipelines import Build, Release, parse_timestamp
from spk.repositories import ClusterSyncStatus

FIXTURES_DIR = Path(__file__).parent / "fixtures"

_CLAUSE = re.compile(r"(\w+) eq @(\w+)")


def load_fixture(name: str) -> Any:
    with open(FIXTURES_DIR / name) as f:
        return json.load(f)


# ============================================================================
# TABLE FIXTURES
# ============================================================================


class FakeTableClient:
    """In-memory stand-in for azure.data.tables.TableClient."""

    def __init__(self, entities: list[dict[str, Any]] | None = None):
        self.entities = [dict(e) for e in entities or []]
        self.created: list[dict[str, Any]] = []
        self.updated: list[dict[str, Any]] = []
        self.deleted: list[tuple[str, str]] = []

    def query_entities(self, query_filter: str, parameters: dict[str, Any]):
        clauses = [(column, parameters[name]) for column, name in _CLAUSE.findall(query_filter)]
        for entity in self.entities:
            if all(entity.get(column) == value for column, value in clauses):
                yield dict(entity)

    def create_entity(self, entity: dict[str, Any]):
        self.created.append(entity)
        self.entities.append(dict(entity))

    def update_entity(self, entity: dict[str, Any], mode=None):
        self.updated.append(entity)
        for i, existing in enumerate(self.entities):
            if existing["RowKey"] == entity["RowKey"]:
                self.entities[i] = dict(entity)

    def delete_entity(self, partition_key: str, row_key: str):
        self.deleted.append((partition_key, row_key))
        self.entities = [e for e in self.entities if e["RowKey"] != row_key]


@pytest.fixture
def deployment_entities():
    """Ten deployment rows in the integration-test partition."""
    return load_fixture("deployments.json")


@pytest.fixture
def fake_table_client(deployment_entities):
    return FakeTableClient(deployment_entities)


@pytest.fixture
def deployment_table(fake_table_client):
    """DeploymentTable over the fixture rows."""
    return DeploymentTable(
        account_name="spkstorage",
        account_key="fake-account-key",  # noqa: S106 - test fixture
        table_name="deployments",
        partition_key="integration-test",
        client=fake_table_client,
    )


@pytest.fixture
def empty_table():
    return DeploymentTable(
        "spkstorage", "fake-account-key", "deployments", "integration-test", client=FakeTableClient()
    )


# ============================================================================
# PIPELINE FIXTURES
# ============================================================================


@pytest.fixture
def builds_by_id():
    return {str(b["id"]): Build.from_api(b) for b in load_fixture("builds.json")["value"]}


@pytest.fixture
def releases_by_id():
    return {str(r["id"]): Release.from_api(r) for r in load_fixture("releases.json")["value"]}


@pytest.fixture
def pipelines(builds_by_id, releases_by_id):
    """(src, hld, manifest) pipeline fakes serving the fixture responses."""

    def _builds(ids):
        return {i: builds_by_id[i] for i in ids if i in builds_by_id}

    def _releases(ids):
        return {i: releases_by_id[i] for i in ids if i in releases_by_id}

    src = MagicMock()
    src.get_builds.side_effect = _builds
    hld = MagicMock()
    hld.get_releases.side_effect = _releases
    manifest = MagicMock()
    manifest.get_builds.side_effect = _builds
    return src, hld, manifest


@pytest.fixture
def sync_statuses():
    """Six flux sync tags, in no particular order."""
    return [
        ClusterSyncStatus(
            name=tag["name"],
            commit=tag["commit"],
            date=parse_timestamp(tag["date"]),
            tagger=tag["tagger"],
            message=tag["message"],
        )
        for tag in load_fixture("sync-status.json")
    ]


@pytest.fixture
def load_json():
    """Loader for JSON files in tests/fixtures."""
    return load_fixture
