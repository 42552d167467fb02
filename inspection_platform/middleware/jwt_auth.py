"""
JWT Auth Middleware — parses the Bearer token and sets g.jwt_*.

Decoding only: the middleware never rejects a request. Blueprints decide
what an anonymous caller (g.jwt_user_id is None) may do.

    g.jwt_user_id          int from "sub"
    g.jwt_role             SUPER_ADMIN | ADMIN | MINI_ADMIN | INSPECTOR
    g.jwt_organization_id  caller's organization, if any
    g.jwt_area_id          caller's area, if any
"""

import logging

import jwt as pyjwt
from flask import g, request

from inspection_platform.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing; the cron endpoint uses its own shared secret.
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/cron/",
)


def _as_int(value):
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_organization_id = None
        g.jwt_area_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired JWT on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid JWT on %s", path)
            return

        g.jwt_user_id = _as_int(payload.get("sub"))
        g.jwt_role = payload.get("role")
        g.jwt_organization_id = _as_int(payload.get("organization_id"))
        g.jwt_area_id = _as_int(payload.get("area_id"))
