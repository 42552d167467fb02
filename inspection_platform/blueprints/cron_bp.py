"""
Cron & Scheduler Blueprint.

Endpoints:
    GET|POST /api/v1/cron/inspection-sweep
        Called by the external time-based invoker.
        Header: Authorization: Bearer <CRON_SECRET>

    GET  /api/v1/scheduler/jobs                       SUPER_ADMIN
    POST /api/v1/scheduler/jobs/<job_name>/trigger    SUPER_ADMIN, runs even if paused
    POST /api/v1/scheduler/jobs/<job_name>/toggle     SUPER_ADMIN, body {"enabled": bool}
"""

import hmac
import logging

from flask import Blueprint, current_app, g, jsonify, request

from inspection_platform.models.auth import Roles
from inspection_platform.services.scheduler_service import SchedulerService, get_registered_jobs
from inspection_platform.utils.errors import E, api_error

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/v1")

SWEEP_JOB = "inspection_sweep"


def _cron_authorized() -> bool:
    secret = current_app.config.get("CRON_SECRET")
    if not secret:
        logger.error("CRON_SECRET is not configured; refusing cron call")
        return False
    supplied = request.headers.get("Authorization", "")
    return hmac.compare_digest(supplied.encode(), f"Bearer {secret}".encode())


def _require_super_admin():
    if getattr(g, "jwt_user_id", None) is None:
        return api_error(E.UNAUTHENTICATED, "Authentication required")
    if g.jwt_role != Roles.SUPER_ADMIN:
        return api_error(E.FORBIDDEN, "Super admin access required")
    return None


def _job_response(outcome: dict):
    if outcome.get("status") == "failed":
        return api_error(E.INTERNAL, "Job failed", status=500,
                         details={"job_name": outcome.get("job_name")})
    return jsonify(outcome), 200


# ── Cron ───────────────────────────────────────────────────────────────────────


@cron_bp.route("/cron/inspection-sweep", methods=["GET", "POST"])
def inspection_sweep():
    """Run the recurring-inspection sweep.  Per-pair failures are reported in the body."""
    if not _cron_authorized():
        logger.warning("Rejected cron call from %s", request.remote_addr)
        return api_error(E.UNAUTHENTICATED, "Unauthorized")
    return _job_response(SchedulerService.run_job(SWEEP_JOB))


# ── Scheduler admin ────────────────────────────────────────────────────────────


@cron_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    err = _require_super_admin()
    if err:
        return err
    return jsonify({"jobs": SchedulerService.list_jobs()}), 200


@cron_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name: str):
    err = _require_super_admin()
    if err:
        return err
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, "Unknown job")
    logger.info("Manual trigger of %s by user %s", job_name, g.jwt_user_id)
    return _job_response(SchedulerService.run_job(job_name, force=True))


@cron_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name: str):
    err = _require_super_admin()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled must be true or false")
    record = SchedulerService.toggle_job(job_name, enabled)
    if record is None:
        return api_error(E.NOT_FOUND, "Unknown job")
    return jsonify(record), 200
