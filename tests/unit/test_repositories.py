"""Unit tests for repositories module."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from spk.repositories import (
    AzureDevOpsRepository,
    ClusterSyncStatus,
    GitHubRepository,
    RepositoryError,
    repository_from_url,
)


def _response(payload, status=200):
    response = MagicMock(status_code=status, url="https://api.github.com")
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


class TestClusterSyncStatus:
    """Tests for ClusterSyncStatus.matches_commit."""

    @pytest.mark.parametrize(
        "commit_id,expected",
        [
            ("m008aaaa", True),
            ("M008AAAA", True),
            ("m008b", False),
            ("m007", False),
            ("", False),
            (None, False),
        ],
    )
    def test_matches_commit(self, commit_id, expected):
        status = ClusterSyncStatus("flux-dev", "m008aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa", None)
        assert status.matches_commit(commit_id) is expected

    def test_to_dict(self):
        status = ClusterSyncStatus(
            "flux-dev", "abc", datetime(2020, 4, 8, 11, tzinfo=timezone.utc), "Weave Flux"
        )
        assert status.to_dict()["date"] == "2020-04-08T11:00:00+00:00"


class TestGitHubRepository:
    """Tests for GitHub sync tags."""

    def test_get_manifest_sync_state(self):
        session = MagicMock()
        session.headers = {}
        session.get.side_effect = [
            _response(
                [
                    {
                        "ref": "refs/tags/flux-sync",
                        "object": {"type": "tag", "url": "https://api.github.com/tag/1"},
                    },
                    {"ref": "refs/tags/v1.0", "object": {"type": "commit", "url": "unused"}},
                ]
            ),
            _response(
                {
                    "tag": "flux-sync",
                    "object": {"sha": "m008aaaa"},
                    "tagger": {"name": "Weave Flux", "date": "2020-04-08T11:00:00Z"},
                    "message": "Sync pointer\n",
                }
            ),
        ]
        repo = GitHubRepository("contoso", "manifests", "token", session=session)

        statuses = repo.get_manifest_sync_state()

        assert len(statuses) == 1
        assert statuses[0].name == "flux-sync"
        assert statuses[0].commit == "m008aaaa"
        assert statuses[0].tagger == "Weave Flux"
        assert statuses[0].message == "Sync pointer"
        assert session.headers["Authorization"] == "token token"
        assert session.get.call_args_list[0].args[0] == (
            "https://api.github.com/repos/contoso/manifests/git/refs/tags"
        )

    def test_skips_non_sync_tags(self):
        session = MagicMock()
        session.headers = {}
        session.get.side_effect = [
            _response(
                [
                    {
                        "ref": "refs/tags/v2.0",
                        "object": {"type": "tag", "url": "https://api.github.com/tag/2"},
                    },
                    {
                        "ref": "refs/tags/flux-sync",
                        "object": {"type": "tag", "url": "https://api.github.com/tag/1"},
                    },
                ]
            ),
            _response(
                {
                    "tag": "flux-sync",
                    "object": {"sha": "m008aaaa"},
                    "tagger": {"name": "Weave Flux", "date": "2020-04-08T11:00:00Z"},
                }
            ),
        ]
        repo = GitHubRepository("contoso", "manifests", session=session)

        statuses = repo.get_manifest_sync_state()

        assert [s.name for s in statuses] == ["flux-sync"]
        assert session.get.call_count == 2

    def test_http_error(self):
        session = MagicMock()
        session.get.return_value = _response({}, status=404)
        repo = GitHubRepository("contoso", "manifests", session=session)

        with pytest.raises(RepositoryError):
            repo.get_manifest_sync_state()


class TestAzureDevOpsRepository:
    """Tests for Azure DevOps Repos sync tags."""

    def test_get_manifest_sync_state(self):
        session = MagicMock()
        session.get.side_effect = [
            _response(
                {
                    "value": [
                        {
                            "name": "refs/tags/flux-prod",
                            "objectId": "t1",
                            "peeledObjectId": "m007bbbb",
                        }
                    ]
                }
            ),
            _response(
                {
                    "name": "flux-prod",
                    "taggedObject": {"objectId": "m007bbbb"},
                    "taggedBy": {"name": "Weave Flux", "date": "2020-04-07T11:00:00Z"},
                    "message": "Sync pointer",
                }
            ),
        ]
        repo = AzureDevOpsRepository("contoso", "fabrikam", "manifests", "pat", session=session)

        statuses = repo.get_manifest_sync_state()

        assert [s.name for s in statuses] == ["flux-prod"]
        assert statuses[0].commit == "m007bbbb"
        assert statuses[0].date == datetime(2020, 4, 7, 11, tzinfo=timezone.utc)
        assert session.auth == ("", "pat")
        assert session.get.call_args_list[0].kwargs["params"]["peelTags"] == "true"
        assert session.get.call_args_list[1].args[0] == (
            "https://dev.azure.com/contoso/fabrikam/_apis/git/repositories/manifests"
            "/annotatedtags/t1"
        )

    def test_skips_lightweight_and_release_tags(self):
        session = MagicMock()
        session.get.side_effect = [
            _response(
                {
                    "value": [
                        {"name": "refs/tags/v1.0", "objectId": "c0ffee"},
                        {
                            "name": "refs/tags/v2.0",
                            "objectId": "t2",
                            "peeledObjectId": "c0ffee",
                        },
                        {
                            "name": "refs/tags/flux-sync",
                            "objectId": "t1",
                            "peeledObjectId": "m008aaaa",
                        },
                    ]
                }
            ),
            _response(
                {
                    "name": "flux-sync",
                    "taggedObject": {"objectId": "m008aaaa"},
                    "taggedBy": {"name": "Weave Flux", "date": "2020-04-08T11:00:00Z"},
                }
            ),
        ]
        repo = AzureDevOpsRepository("contoso", "fabrikam", "manifests", session=session)

        statuses = repo.get_manifest_sync_state()

        assert [s.name for s in statuses] == ["flux-sync"]
        assert session.get.call_count == 2
        assert session.get.call_args_list[1].args[0].endswith("/annotatedtags/t1")

    @patch("spk.retry_handler.time.sleep")
    def test_retries_throttling(self, mock_sleep):
        session = MagicMock()
        session.get.side_effect = [_response({}, status=429), _response({"value": []})]
        repo = AzureDevOpsRepository("contoso", "fabrikam", "manifests", session=session)

        assert repo.get_manifest_sync_state() == []
        assert session.get.call_count == 2


class TestRepositoryFromUrl:
    """Tests for provider selection."""

    def test_github(self):
        repo = repository_from_url("https://github.com/contoso/manifests.git", "token")
        assert isinstance(repo, GitHubRepository)
        assert (repo.owner, repo.name) == ("contoso", "manifests")

    def test_github_without_scheme(self):
        repo = repository_from_url("github.com/contoso/manifests")
        assert isinstance(repo, GitHubRepository)

    def test_azure_devops(self):
        repo = repository_from_url("https://dev.azure.com/contoso/fabrikam/_git/manifests")
        assert isinstance(repo, AzureDevOpsRepository)
        assert (repo.org, repo.project, repo.repo) == ("contoso", "fabrikam", "manifests")

    def test_azure_devops_with_user(self):
        repo = repository_from_url("https://contoso@dev.azure.com/contoso/fabrikam/_git/manifests")
        assert isinstance(repo, AzureDevOpsRepository)

    def test_visualstudio(self):
        repo = repository_from_url("https://contoso.visualstudio.com/fabrikam/_git/manifests")
        assert isinstance(repo, AzureDevOpsRepository)
        assert repo.org == "contoso"

    def test_empty(self):
        assert repository_from_url(None) is None
        assert repository_from_url("") is None

    def test_unknown_host(self):
        assert repository_from_url("https://gitlab.com/contoso/manifests") is None

    def test_malformed_azure_devops_url(self):
        with pytest.raises(RepositoryError):
            repository_from_url("https://dev.azure.com/contoso")
