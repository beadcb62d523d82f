"""Unit tests for the command line."""

import subprocess
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from backstage_gitops.cli import _build_parser, _print_plan, main
from backstage_gitops.config import get_settings
from backstage_gitops.registry import PushedImage


@pytest.fixture
def mock_settings(settings):
    """Patch the settings accessor with isolated settings."""
    with patch("backstage_gitops.cli.get_settings", return_value=settings):
        yield settings


class TestParser:
    """Test argument parsing."""

    def test_plan_with_stack(self):
        """Test the plan subcommand with a stack filter."""
        args = _build_parser().parse_args(["plan", "--stack", "backstage"])
        assert args.command == "plan"
        assert args.stack == "backstage"

    def test_push_image_with_tag(self):
        """Test the push-image subcommand with a tag."""
        args = _build_parser().parse_args(["push-image", "--tag", "v2"])
        assert args.command == "push-image"
        assert args.tag == "v2"

    def test_command_required(self):
        """Test that a subcommand must be given."""
        with pytest.raises(SystemExit):
            _build_parser().parse_args([])


class TestPrintPlan:
    """Test plan rendering."""

    def test_print_plan(self, capsys):
        """Test that stacks are numbered and batches listed in order."""
        _print_plan({"gitops-platform": [["Vpc"], ["RouteTable", "Subnet0"]], "backstage": [["Alb"]]})

        lines = capsys.readouterr().out.splitlines()
        assert lines == [
            "1. gitops-platform",
            "   [1] Vpc",
            "   [2] RouteTable, Subnet0",
            "2. backstage",
            "   [1] Alb",
        ]


class TestMain:
    """Test command dispatch and exit codes."""

    @patch("backstage_gitops.cli.plan")
    def test_plan_success(self, mock_plan, mock_settings, capsys):
        """Test that a successful plan exits with 0."""
        mock_plan.return_value = {"backstage": [["Alb"]]}

        assert main(["plan", "--stack", "backstage"]) == 0

        mock_plan.assert_called_once_with(mock_settings, stack="backstage")
        assert "1. backstage" in capsys.readouterr().out

    @patch("backstage_gitops.cli.plan")
    def test_invalid_environment(self, mock_plan, monkeypatch):
        """Test that invalid settings exit with 1 before any work starts."""
        monkeypatch.setenv("CONTAINER_PORT", "70000")
        get_settings.cache_clear()
        try:
            assert main(["plan"]) == 1
        finally:
            get_settings.cache_clear()
        mock_plan.assert_not_called()

    @patch("backstage_gitops.cli.plan")
    def test_plan_unknown_stack(self, mock_plan, mock_settings):
        """Test that an unknown stack exits with 1."""
        mock_plan.side_effect = KeyError("Unknown stack 'nope'")
        assert main(["plan", "--stack", "nope"]) == 1

    @patch("backstage_gitops.cli.plan")
    def test_plan_cycle(self, mock_plan, mock_settings):
        """Test that a dependency cycle exits with 1."""
        mock_plan.side_effect = ValueError("Dependency cycle between resources")
        assert main(["plan"]) == 1

    @patch("backstage_gitops.registry.push_image")
    def test_push_image_success(self, mock_push, mock_settings, capsys):
        """Test that the pushed digest is printed."""
        mock_push.return_value = PushedImage(
            image_name="repo:v2", repo_digest="repo@sha256:abc"
        )

        assert main(["push-image", "--tag", "v2"]) == 0

        mock_push.assert_called_once_with(mock_settings, tag="v2")
        assert "repo@sha256:abc" in capsys.readouterr().out

    @patch("backstage_gitops.registry.push_image")
    def test_push_image_invalid_credentials(self, mock_push, mock_settings):
        """Test that undecodable registry credentials exit with 1."""
        mock_push.side_effect = ValueError("Invalid credentials")
        assert main(["push-image"]) == 1

    @patch("backstage_gitops.registry.push_image")
    def test_push_image_aws_error(self, mock_push, mock_settings):
        """Test that an AWS API error exits with 1."""
        mock_push.side_effect = ClientError(
            {"Error": {"Code": "RepositoryNotFoundException", "Message": "not found"}},
            "DescribeRepositories",
        )
        assert main(["push-image"]) == 1

    @patch("backstage_gitops.registry.push_image")
    def test_push_image_docker_failure(self, mock_push, mock_settings):
        """Test that a failed docker command exits with 1."""
        mock_push.side_effect = subprocess.CalledProcessError(1, ["docker", "push", "repo:v2"])
        assert main(["push-image"]) == 1

    @patch("backstage_gitops.registry.push_image")
    def test_unexpected_error_propagates(self, mock_push, mock_settings):
        """Test that unexpected errors are not swallowed."""
        mock_push.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            main(["push-image"])


class TestPlan:
    """Test planning against a synthesized app."""

    def test_plan_orders_stacks(self, settings):
        """Test that the platform and registry deploy before Backstage."""
        from backstage_gitops.cli import plan

        result = plan(settings)
        order = list(result)

        assert set(order) == {"gitops-platform", "backstage-registry", "backstage"}
        assert order.index("gitops-platform") < order.index("backstage")
        assert order.index("backstage-registry") < order.index("backstage")
        for batches in result.values():
            assert batches and all(batches)

    def test_plan_single_stack(self, settings):
        """Test planning only the registry stack."""
        from backstage_gitops.cli import plan

        result = plan(settings, stack="backstage-registry")
        assert list(result) == ["backstage-registry"]

    def test_plan_unknown_stack(self, settings):
        """Test that an unknown stack name raises KeyError."""
        from backstage_gitops.cli import plan

        with pytest.raises(KeyError):
            plan(settings, stack="nope")
