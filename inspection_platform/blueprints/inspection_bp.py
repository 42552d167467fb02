"""
Inspection Blueprint — role-scoped listing and mutation of inspections.

Endpoints:
    GET    /api/v1/inspections
           Query: organization_id (SUPER_ADMIN act-as), status, buffer_days
    GET    /api/v1/inspections/stats
    GET    /api/v1/inspections/<id>
    POST   /api/v1/inspections
           Body: { "template_id", "inspector_id", "due_date"?, "department_id"? }
    DELETE /api/v1/inspections/<id>
    PUT    /api/v1/inspections/<id>/items/<checklist_item_id>
           Body: { "approved": bool, "comments"? }
    POST   /api/v1/inspections/<id>/submit

Layer contract:
    - Blueprint: authenticate, resolve the caller's scope, parse input,
      call inspection_service, return JSON.
    - NO db.session calls here; service exceptions are mapped to HTTP by
      the app-level handlers in utils.errors.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from inspection_platform.services import inspection_service
from inspection_platform.services.scope_resolver import resolve_scope
from inspection_platform.utils.errors import E, api_error
from inspection_platform.utils.helpers import parse_due_date, utcnow

logger = logging.getLogger(__name__)

inspection_bp = Blueprint("inspection", __name__, url_prefix="/api/v1")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _caller_scope():
    """Resolve the caller's scope for this request.  Returns (scope, err_response)."""
    if getattr(g, "jwt_user_id", None) is None:
        return None, api_error(E.UNAUTHENTICATED, "Authentication required")

    requested_org_id = None
    if request.args.get("organization_id"):
        requested_org_id = request.args.get("organization_id", type=int)
        if requested_org_id is None:
            return None, api_error(E.VALIDATION_INVALID, "organization_id must be an integer")

    scope = resolve_scope(
        role=g.jwt_role,
        organization_id=g.jwt_organization_id,
        area_id=g.jwt_area_id,
        requested_org_id=requested_org_id,
        actor_id=g.jwt_user_id,
    )
    return scope, None


def _buffer_days():
    """Buffer window from ?buffer_days=, else the configured default.  Returns (value, err)."""
    raw = request.args.get("buffer_days")
    if raw in (None, ""):
        return current_app.config.get("STATUS_BUFFER_DAYS"), None
    try:
        value = int(raw)
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, "buffer_days must be an integer")
    if value < 0:
        return None, api_error(E.VALIDATION_INVALID, "buffer_days must be >= 0")
    return value, None


def _int_field(data: dict, name: str, *, required: bool):
    value = data.get(name)
    if value in (None, ""):
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


# ── Reads ──────────────────────────────────────────────────────────────────────


@inspection_bp.route("/inspections", methods=["GET"])
def list_inspections():
    scope, err = _caller_scope()
    if err:
        return err
    buffer_days, err = _buffer_days()
    if err:
        return err

    status = request.args.get("status") or None
    rows = inspection_service.list_inspections(
        scope, now=utcnow(), buffer_days=buffer_days, status=status,
    )
    return jsonify({"inspections": rows, "count": len(rows)}), 200


@inspection_bp.route("/inspections/stats", methods=["GET"])
def inspection_stats():
    scope, err = _caller_scope()
    if err:
        return err
    buffer_days, err = _buffer_days()
    if err:
        return err
    return jsonify(inspection_service.inspection_stats(scope, now=utcnow(), buffer_days=buffer_days)), 200


@inspection_bp.route("/inspections/<int:instance_id>", methods=["GET"])
def get_inspection(instance_id: int):
    scope, err = _caller_scope()
    if err:
        return err
    buffer_days, err = _buffer_days()
    if err:
        return err
    data = inspection_service.get_inspection(scope, instance_id, now=utcnow(), buffer_days=buffer_days)
    return jsonify(data), 200


# ── Mutations ──────────────────────────────────────────────────────────────────


@inspection_bp.route("/inspections", methods=["POST"])
def create_inspection():
    """Create an ad hoc inspection.  201 on success; due_date defaults from the cadence."""
    scope, err = _caller_scope()
    if err:
        return err

    data = request.get_json(silent=True) or {}
    template_id, err = _int_field(data, "template_id", required=True)
    if err:
        return err
    inspector_id, err = _int_field(data, "inspector_id", required=True)
    if err:
        return err
    department_id, err = _int_field(data, "department_id", required=False)
    if err:
        return err
    try:
        due_date = parse_due_date(data.get("due_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    instance = inspection_service.create_on_demand(
        scope, template_id, inspector_id, due_date, department_id, now=utcnow(),
    )
    return jsonify(instance.to_dict()), 201


@inspection_bp.route("/inspections/<int:instance_id>", methods=["DELETE"])
def delete_inspection(instance_id: int):
    scope, err = _caller_scope()
    if err:
        return err
    inspection_service.delete_inspection(scope, instance_id)
    return jsonify({"message": "Inspection deleted", "id": instance_id}), 200


@inspection_bp.route("/inspections/<int:instance_id>/items/<int:checklist_item_id>", methods=["PUT"])
def record_item_result(instance_id: int, checklist_item_id: int):
    scope, err = _caller_scope()
    if err:
        return err

    data = request.get_json(silent=True) or {}
    approved = data.get("approved")
    if not isinstance(approved, bool):
        return api_error(E.VALIDATION_REQUIRED, "approved must be true or false")
    comments = data.get("comments")
    if comments is not None and not isinstance(comments, str):
        return api_error(E.VALIDATION_INVALID, "comments must be a string")

    result = inspection_service.record_item_result(
        scope, instance_id, checklist_item_id, approved, comments,
    )
    return jsonify(result), 200


@inspection_bp.route("/inspections/<int:instance_id>/submit", methods=["POST"])
def submit_inspection(instance_id: int):
    scope, err = _caller_scope()
    if err:
        return err
    buffer_days, err = _buffer_days()
    if err:
        return err
    data = inspection_service.submit_inspection(
        scope, instance_id, now=utcnow(), buffer_days=buffer_days,
    )
    return jsonify(data), 200
