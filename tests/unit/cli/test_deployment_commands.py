"""Tests for the deployment command group."""

import json
import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from spk.cli import main
from spk.commands.deployment import CreateValues, create_deployment
from spk.config_manager import AzureDevOpsConfig, ConfigManager, IntrospectionConfig, SpkConfig
from spk.deployments import IntrospectionContext
from spk.errors import ErrorStatusCode, SpkError
from spk.onboard import OnboardContext, OnboardValues


@pytest.fixture
def runner():
    return CliRunner(env={"COLUMNS": "300"})


@pytest.fixture
def configured(mock_config_path):
    ConfigManager.save_config(
        SpkConfig(
            azure_devops=AzureDevOpsConfig(org="contoso", project="fabrikam", access_token="pat"),
            introspection=IntrospectionConfig(
                account_name="spkstorage",
                table_name="deployments",
                partition_key="integration-test",
                key="account-key",
            ),
        )
    )
    return mock_config_path


@pytest.fixture
def introspection(deployment_table, pipelines):
    src, hld, manifest = pipelines
    return IntrospectionContext(SpkConfig(), deployment_table, src, hld, manifest)


class TestGetCommand:
    """Tests for spk deployment get."""

    def test_json_output(self, runner, configured, introspection):
        with patch("spk.commands.deployment.initialize", return_value=introspection):
            result = runner.invoke(main, ["deployment", "get", "-o", "json", "--top", "2"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [d["deploymentId"] for d in data] == ["aaa010", "aaa009"]

    def test_table_output_with_aliases(self, runner, configured, introspection):
        with patch("spk.commands.deployment.initialize", return_value=introspection):
            result = runner.invoke(main, ["d", "g", "--env", "prod"])

        assert result.exit_code == 0
        assert "Start Time" in result.output
        assert "aaa007" in result.output
        assert "aaa001" not in result.output

    def test_invalid_top(self, runner, configured, caplog):
        with caplog.at_level(logging.ERROR):
            result = runner.invoke(main, ["deployment", "get", "--top", "zero"])

        assert result.exit_code == 1
        assert "introspect-get-cmd-invalid-top" in caplog.text

    def test_missing_configuration(self, runner, mock_config_path, caplog):
        with caplog.at_level(logging.ERROR):
            result = runner.invoke(main, ["deployment", "get"])

        assert result.exit_code == 1
        assert "introspect-get-cmd-failed" in caplog.text
        assert "introspect-get-cmd-missing-values" in caplog.text

    def test_invalid_output_choice(self, runner):
        result = runner.invoke(main, ["deployment", "get", "-o", "yaml"])
        assert result.exit_code != 0

    def test_watch_stops_on_interrupt(self, runner, configured, introspection):
        with (
            patch("spk.commands.deployment.initialize", return_value=introspection),
            patch("spk.commands.deployment.time.sleep", side_effect=KeyboardInterrupt) as sleep,
        ):
            result = runner.invoke(main, ["deployment", "get", "--watch"])

        assert result.exit_code == 0
        sleep.assert_called_once_with(6)


class TestCreateDeployment:
    """Tests for stage dispatch."""

    def test_p1_creates_row(self, empty_table):
        entry = create_deployment(
            empty_table,
            CreateValues(p1="1234", image_tag="hello-1234", commit_id="e3a8a1", service="hello"),
        )
        assert entry["p1"] == "1234"

    def test_p1_requires_values(self, empty_table):
        with pytest.raises(SpkError) as exc_info:
            create_deployment(empty_table, CreateValues(p1="1234", image_tag="hello-1234"))
        assert exc_info.value.error_key == "introspect-create-cmd-p1-missing-values"

    def test_p2_requires_values(self, empty_table):
        with pytest.raises(SpkError) as exc_info:
            create_deployment(empty_table, CreateValues(p2="56", env="dev"))
        assert exc_info.value.error_key == "introspect-create-cmd-p2-missing-values"

    def test_p3_with_hld_commit(self, deployment_table):
        entry = create_deployment(
            deployment_table, CreateValues(p3="305", hld_commit_id="h005", manifest_commit_id="m005")
        )
        assert entry["RowKey"] == "aaa005"

    def test_p3_with_manifest_commit_only(self, deployment_table):
        entry = create_deployment(deployment_table, CreateValues(p3="303", manifest_commit_id="m003"))
        assert entry["manifestCommitId"] == "m003"

    def test_p3_unknown_manifest_build(self, deployment_table):
        with pytest.raises(SpkError) as exc_info:
            create_deployment(deployment_table, CreateValues(p3="999", manifest_commit_id="m999"))
        assert exc_info.value.error_key == "introspect-create-cmd-no-manifest-build"

    def test_nothing_to_do(self, empty_table):
        with pytest.raises(SpkError) as exc_info:
            create_deployment(empty_table, CreateValues(env="dev"))
        assert exc_info.value.error_key == "introspect-create-cmd-no-ops"


class TestCreateCommand:
    """Tests for spk deployment create."""

    def test_storage_values_from_config(self, runner, configured, empty_table):
        with patch(
            "spk.commands.deployment.DeploymentTable", return_value=empty_table
        ) as table_cls:
            result = runner.invoke(
                main,
                [
                    "deployment",
                    "create",
                    "--p1",
                    "1234",
                    "--image-tag",
                    "hello-1234",
                    "--commit-id",
                    "e3a8a1",
                    "--service",
                    "hello",
                ],
            )

        assert result.exit_code == 0
        table_cls.assert_called_once_with(
            "spkstorage", "account-key", "deployments", "integration-test"
        )
        assert empty_table.client.created[0]["service"] == "hello"

    def test_options_override_config(self, runner, configured, empty_table):
        with patch(
            "spk.commands.deployment.DeploymentTable", return_value=empty_table
        ) as table_cls:
            result = runner.invoke(
                main,
                ["d", "c", "-n", "other", "-k", "other-key", "-p", "prod", "--p2", "56",
                 "--image-tag", "hello-1234", "--hld-commit-id", "hld1", "--env", "prod"],
            )

        assert result.exit_code == 0
        table_cls.assert_called_once_with("other", "other-key", "deployments", "prod")

    def test_missing_storage_values(self, runner, mock_config_path, caplog):
        with caplog.at_level(logging.ERROR):
            result = runner.invoke(main, ["deployment", "create", "--p1", "1"])

        assert result.exit_code == 1
        assert "introspect-create-cmd-missing-values" in caplog.text


class TestOnboardCommand:
    """Tests for spk deployment onboard."""

    @patch("spk.commands.deployment.onboard")
    def test_values_fall_back_to_config(self, mock_onboard, runner, configured):
        mock_onboard.return_value = OnboardContext(values=OnboardValues())

        result = runner.invoke(
            main,
            ["deployment", "onboard", "-r", "spk-rg", "--subscription-id", "sub", "-l", "westus2"],
        )

        assert result.exit_code == 0
        values = mock_onboard.call_args.args[0]
        assert values.storage_account_name == "spkstorage"
        assert values.table_name == "deployments"
        assert values.resource_group == "spk-rg"
        assert values.location == "westus2"
        assert "✓ Storage table deployments is ready in spkstorage" in result.output

    @patch("spk.commands.deployment.onboard")
    def test_failure_exits_nonzero(self, mock_onboard, runner, mock_config_path):
        mock_onboard.side_effect = SpkError(ErrorStatusCode.CMD_EXE_ERR, "introspect-onboard-cmd-failed")

        result = runner.invoke(main, ["deployment", "o", "-s", "spkstorage"])

        assert result.exit_code == 1


class TestDeploymentHelp:
    def test_group_help(self, runner):
        result = runner.invoke(main, ["deployment", "--help"])
        assert result.exit_code == 0
        assert "onboard" in result.output

    def test_unknown_subcommand_shows_help(self, runner):
        result = runner.invoke(main, ["deployment", "remove"])
        assert result.exit_code != 0
        assert "Usage:" in result.output
