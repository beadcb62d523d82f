"""Custom resource handler decoding a Kubernetes service-account token.

Kubernetes stores the bearer token of a ``kubernetes.io/service-account-token``
Secret base64-encoded under ``data.token``. CloudFormation has no base64
decode intrinsic, so the platform stack passes the encoded value through
this handler and stores the result in Secrets Manager.
"""

import base64
import binascii
import logging

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def decode_service_account_token(data: dict) -> str:
    """Return the bearer token held in a service-account token Secret's data.

    Args:
        data: The Secret's ``data`` mapping.

    Raises:
        ValueError: If ``token`` is missing, empty or not valid base64 text.
    """
    encoded = data.get("token")
    if not encoded:
        raise ValueError("Service account token secret has no 'token' field")
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Service account token is not valid base64: {e}") from e


def on_event(event, context):
    """Entry point for the custom resource provider framework."""
    request_type = event["RequestType"]
    physical_id = event.get("PhysicalResourceId") or event["LogicalResourceId"]
    logger.info(f"{request_type} request for {physical_id}")

    if request_type == "Delete":
        return {"PhysicalResourceId": physical_id}

    token = decode_service_account_token(
        {"token": event["ResourceProperties"].get("EncodedToken")}
    )
    return {
        "PhysicalResourceId": physical_id,
        "Data": {"Token": token},
        "NoEcho": True,
    }
