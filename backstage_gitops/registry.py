"""Container registry login, image build and push.

The Backstage image is built locally and pushed to the repository created by
the registry stack. ECR hands out a base64 ``username:password`` token which
is decoded here and fed to ``docker login`` on stdin.
"""

import base64
import binascii
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

import boto3
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from backstage_gitops.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryCredentials:
    """Login material for a container registry."""

    server: str
    username: str
    password: str


@dataclass(frozen=True)
class PushedImage:
    """An image reference pushed to the registry."""

    image_name: str
    repo_digest: Optional[str]


def decode_registry_credentials(authorization_token: str) -> tuple[str, str]:
    """Decode an ECR authorization token into username and password.

    Args:
        authorization_token: Base64 encoding of ``username:password``.

    Returns:
        Tuple of (username, password).

    Raises:
        ValueError: If the token is not valid base64 or the decoded value
            does not split into exactly two parts on ``:``.
    """
    try:
        decoded = base64.b64decode(authorization_token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid credentials: token is not base64 ({e})") from e

    parts = decoded.split(":")
    if len(parts) != 2:
        raise ValueError(
            f"Invalid credentials: expected 'username:password', got {len(parts)} part(s)"
        )
    return parts[0], parts[1]


def get_registry_credentials(ecr_client, registry_id: str) -> RegistryCredentials:
    """Fetch and decode login credentials for an ECR registry."""
    response = ecr_client.get_authorization_token(registryIds=[registry_id])
    auth = response["authorizationData"][0]
    username, password = decode_registry_credentials(auth["authorizationToken"])
    return RegistryCredentials(
        server=auth["proxyEndpoint"],
        username=username,
        password=password,
    )


def describe_repository(ecr_client, repository_name: str) -> dict:
    """Return the ECR description of a repository."""
    response = ecr_client.describe_repositories(repositoryNames=[repository_name])
    return response["repositories"][0]


def _run(command: List[str], input_text: Optional[str] = None) -> None:
    """Run a docker command, raising CalledProcessError on failure."""
    logger.info(f"Running: {' '.join(command[:3])}")
    subprocess.run(command, input=input_text, text=True, check=True)


def docker_login(credentials: RegistryCredentials) -> None:
    """Log the local docker daemon in to the registry."""
    _run(
        [
            "docker",
            "login",
            "--username",
            credentials.username,
            "--password-stdin",
            credentials.server,
        ],
        input_text=credentials.password,
    )


def docker_build(settings: Settings, image_name: str) -> None:
    """Build the Backstage image with BuildKit."""
    _run(
        [
            "docker",
            "buildx",
            "build",
            "--platform",
            settings.docker_platform,
            "--file",
            settings.dockerfile,
            "--tag",
            image_name,
            "--load",
            settings.docker_context,
        ]
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(subprocess.CalledProcessError),
    reraise=True,
)
def docker_push(image_name: str) -> None:
    """Push an image, retrying transient registry failures."""
    _run(["docker", "push", image_name])


def get_repo_digest(ecr_client, repository_name: str, tag: str) -> Optional[str]:
    """Look up the digest ECR recorded for a pushed tag."""
    response = ecr_client.describe_images(
        repositoryName=repository_name,
        imageIds=[{"imageTag": tag}],
    )
    details = response.get("imageDetails", [])
    if not details:
        return None
    return details[0]["imageDigest"]


def push_image(settings: Settings, tag: Optional[str] = None, ecr_client=None) -> PushedImage:
    """Build the Backstage image and push it to the registry stack's repository.

    Args:
        settings: Deployment settings.
        tag: Image tag to push. Defaults to ``settings.image_tag``.
        ecr_client: Optional boto3 ECR client (created from the region otherwise).

    Returns:
        The pushed image name and its repository digest.
    """
    tag = tag or settings.image_tag
    ecr_client = ecr_client or boto3.client("ecr", region_name=settings.aws_region)

    repository = describe_repository(ecr_client, settings.repository_name)
    image_name = f"{repository['repositoryUri']}:{tag}"

    credentials = get_registry_credentials(ecr_client, repository["registryId"])
    docker_login(credentials)
    docker_build(settings, image_name)
    docker_push(image_name)

    digest = get_repo_digest(ecr_client, settings.repository_name, tag)
    repo_digest = f"{repository['repositoryUri']}@{digest}" if digest else None
    logger.info(f"Pushed {image_name} ({repo_digest or 'digest unavailable'})")
    return PushedImage(image_name=image_name, repo_digest=repo_digest)
