"""Pytest configuration and fixtures.

This module puts the repository root on the Python path so the
``backstage_gitops`` and ``infrastructure`` packages import without an
install, and provides synthesized stacks shared across test modules.
"""

import json
import sys
from pathlib import Path

import pytest

# Add the repository root to Python path so package imports work
root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

import aws_cdk as cdk  # noqa: E402
from aws_cdk.assertions import Template  # noqa: E402

from backstage_gitops.config import Settings  # noqa: E402


def build_settings(**overrides) -> Settings:
    """Settings independent of the developer's .env file and AWS environment."""
    values = {
        "aws_account": "123456789012",
        "aws_region": "eu-central-1",
        "availability_zones": ["eu-central-1a", "eu-central-1b"],
        "public_subnet_cidrs": ["10.0.0.0/27", "10.0.0.32/27"],
        "backstage_subnet_cidrs": ["10.0.0.64/27", "10.0.0.128/27"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def synthesize(settings: Settings) -> dict:
    """Build the app and return its templates keyed by stack name."""
    from infrastructure.assembly import build_app

    app = build_app(settings, cdk.App())
    return {
        settings.platform_stack_name: Template.from_stack(
            app.node.find_child(settings.platform_stack_name)
        ),
        settings.registry_stack_name: Template.from_stack(
            app.node.find_child(settings.registry_stack_name)
        ),
        settings.backstage_stack_name: Template.from_stack(
            app.node.find_child(settings.backstage_stack_name)
        ),
    }


def logical_id_with_prefix(template: Template, resource_type: str, prefix: str) -> str:
    """Find the single logical id of a resource type starting with a prefix."""
    matches = [
        logical_id
        for logical_id in template.find_resources(resource_type)
        if logical_id.startswith(prefix)
    ]
    assert len(matches) == 1, f"Expected one {resource_type} starting with {prefix}, got {matches}"
    return matches[0]


def kubernetes_manifests(template: Template) -> dict:
    """Kubernetes objects declared with literal manifests, keyed by (kind, name)."""
    objects = {}
    for resource in template.find_resources("Custom::AWSCDK-EKS-KubernetesResource").values():
        manifest = resource["Properties"]["Manifest"]
        if not isinstance(manifest, str):
            continue
        for document in json.loads(manifest):
            objects[(document["kind"], document["metadata"]["name"])] = document
    return objects


@pytest.fixture
def settings() -> Settings:
    """Default deployment settings."""
    return build_settings()


@pytest.fixture(scope="session")
def templates() -> dict:
    """Templates of all stacks synthesized once per session."""
    return synthesize(build_settings())


@pytest.fixture(scope="session")
def platform_template(templates) -> Template:
    """Synthesized GitOps platform stack."""
    return templates["gitops-platform"]


@pytest.fixture(scope="session")
def registry_template(templates) -> Template:
    """Synthesized registry stack."""
    return templates["backstage-registry"]


@pytest.fixture(scope="session")
def backstage_template(templates) -> Template:
    """Synthesized Backstage application stack."""
    return templates["backstage"]
