"""Firebase Admin SDK setup for push notifications."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None


def _load_credentials(
    credentials_path: str | None,
    config_json: str | None,
) -> credentials.Base | None:
    if config_json:
        return credentials.Certificate(json.loads(config_json))
    if credentials_path and os.path.exists(credentials_path):
        return credentials.Certificate(credentials_path)
    return None


def initialize_firebase(
    credentials_path: str | None = None,
    config_json: str | None = None,
) -> firebase_admin.App:
    """
    Initialize the Firebase app used for Cloud Messaging.

    A raw service account JSON wins over a credentials file; without either,
    Application Default Credentials are used.

    Args:
        credentials_path: Path to a service account JSON file
        config_json: Raw service account JSON

    Returns:
        Initialized Firebase app
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        cred = _load_credentials(credentials_path, config_json)
        _firebase_app = firebase_admin.initialize_app(cred)
    except (ValueError, OSError) as e:
        logger.error("firebase_initialization_failed", error=str(e))
        raise

    logger.info(
        "firebase_initialized",
        credentials="service_account" if cred else "application_default",
    )
    return _firebase_app


def is_firebase_initialized() -> bool:
    """Whether push notifications can be delivered."""
    return _firebase_app is not None
