# Overview: Verifies identity-provider tokens and resolves the caller's owner id.

"""
Identity Service (Firebase Authentication)

Sign-in happens in the browser against Firebase; the API only receives the
resulting ID token. verify_id_token checks signature, expiry and audience
with the Firebase Admin SDK and returns the token's uid, which is used as
the owner id for every owner-scoped operation.
"""
from __future__ import annotations

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials as firebase_credentials
from firebase_admin import exceptions as firebase_exceptions
from flask import current_app

FIREBASE_APP_NAME = "laundry"


def _get_firebase_app() -> firebase_admin.App:
    """Initialize the Firebase Admin app on first use."""
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    credentials_path = current_app.config.get("FIREBASE_CREDENTIALS")
    project_id = current_app.config.get("FIREBASE_PROJECT_ID")

    cred = firebase_credentials.Certificate(credentials_path) if credentials_path else None
    options = {"projectId": project_id} if project_id else None

    app = firebase_admin.initialize_app(cred, options, name=FIREBASE_APP_NAME)
    current_app.logger.info("Firebase Admin SDK initialized (project=%s)", project_id or "default")
    return app


def verify_id_token(token: str) -> str | None:
    """
    Verify a Firebase ID token.

    Returns:
        The owner id (Firebase uid), or None if the token is invalid,
        expired, revoked or cannot be checked
    """
    if not token:
        return None

    try:
        decoded = firebase_auth.verify_id_token(token, app=_get_firebase_app())
    except (ValueError, firebase_exceptions.FirebaseError) as exc:
        current_app.logger.warning("Rejected identity token: %s", exc.__class__.__name__)
        return None

    uid = decoded.get("uid")
    return uid or None
