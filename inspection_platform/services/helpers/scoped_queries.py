"""
Scope-filtered query helpers.

Every read of tenant data goes through these helpers instead of
``Model.query.get(pk)`` or ``db.session.get(Model, pk)``. Direct ``.get()``
calls bypass organizational scoping.

Usage:
    # Column-scoped single lookup (templates, departments)
    template = get_scoped(MasterTemplate, template_id, organization_id=org_id)

    # Inspection instances under a ResolvedScope
    stmt = scoped_instance_select(scope)
    instance = get_scoped_instance(scope, instance_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing
    rather than silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from inspection_platform.core.exceptions import AccessDeniedError, NotFoundError
from inspection_platform.models import db
from inspection_platform.models.inspection import InspectionInstance
from inspection_platform.models.organization import Department
from inspection_platform.services.scope_resolver import ResolvedScope, ScopeLevel

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    area_id: int | None = None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Out-of-scope access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Raises:
        ValueError: If no scope parameter is provided, or if no provided
                    scope kwarg names a column that exists on the model.
        NotFoundError: If the entity does not exist OR is out of scope.
    """
    provided_scopes: dict[str, int] = {
        "organization_id": organization_id,
        "area_id": area_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id or area_id). Unscoped lookups are forbidden."
        )

    applicable_scopes = {
        field: value
        for field, value in provided_scopes.items()
        if hasattr(model, field)
    }

    missing_fields = set(provided_scopes) - set(applicable_scopes)
    if missing_fields:
        logger.warning(
            "get_scoped(%s, %s): scope field(s) %s not found on model — "
            "those filters were NOT applied.",
            model.__name__,
            pk,
            sorted(missing_fields),
        )

    if not applicable_scopes:
        raise ValueError(
            f"{model.__name__} id={pk}: no applicable scope — "
            f"none of the provided scope fields {sorted(provided_scopes)} "
            f"exist as columns on {model.__name__}. "
            "Refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in applicable_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            applicable_scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def scoped_instance_select(scope: ResolvedScope):
    """SELECT over inspection instances restricted to *scope*.

    The platform-level sentinel is refused: instance listings always need
    an organization, area or inspector filter.
    """
    stmt = select(InspectionInstance).join(
        Department, InspectionInstance.department_id == Department.id,
    )
    if scope.level == ScopeLevel.ORGANIZATION:
        return stmt.where(Department.organization_id == scope.organization_id)
    if scope.level == ScopeLevel.AREA:
        return stmt.where(Department.area_id == scope.area_id)
    if scope.level == ScopeLevel.INSPECTOR:
        return stmt.where(InspectionInstance.inspector_id == scope.inspector_id)
    raise AccessDeniedError("Select an organization to view inspections",
                            reason="unscoped_instance_query")


def get_scoped_instance(scope: ResolvedScope, pk: int) -> InspectionInstance:
    """Fetch one inspection instance inside *scope* or raise NotFoundError."""
    stmt = scoped_instance_select(scope).where(InspectionInstance.id == pk)
    instance = db.session.execute(stmt).scalar_one_or_none()
    if instance is None:
        raise NotFoundError(resource="InspectionInstance", resource_id=pk)
    return instance


def department_in_scope(scope: ResolvedScope, department: Department) -> bool:
    if scope.level == ScopeLevel.ORGANIZATION:
        return department.organization_id == scope.organization_id
    if scope.level == ScopeLevel.AREA:
        return department.area_id == scope.area_id
    return False
