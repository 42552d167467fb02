"""Per-request organizational scope resolution.

Roles nest: SUPER_ADMIN ⊃ ADMIN ⊃ MINI_ADMIN ⊃ INSPECTOR. Every request
builds a fresh ``ResolvedScope`` from the caller's claims; nothing is
cached between requests, and a client-supplied "acting as" organization is
only honoured after it has been re-checked against the caller's role here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inspection_platform.core.exceptions import AccessDeniedError
from inspection_platform.models import db
from inspection_platform.models.auth import Roles
from inspection_platform.models.organization import Area, Organization

logger = logging.getLogger(__name__)


class ScopeLevel:
    PLATFORM = "platform"          # SUPER_ADMIN without act-as: aggregates only
    ORGANIZATION = "organization"
    AREA = "area"
    INSPECTOR = "inspector"


@dataclass(frozen=True)
class ResolvedScope:
    """Filter a caller may read and write within.

    ``organization_id`` is set for organization scopes and, when known,
    for area scopes (so template ownership can be checked); the area
    filter itself only uses ``area_id``.
    """

    level: str
    actor_id: int | None
    role: str
    organization_id: int | None = None
    area_id: int | None = None
    inspector_id: int | None = None
    acting_as: bool = False

    @property
    def is_unscoped(self) -> bool:
        return self.level == ScopeLevel.PLATFORM

    @property
    def can_manage(self) -> bool:
        """ADMIN / MINI_ADMIN-equivalent scopes may create and delete instances."""
        return self.level in (ScopeLevel.ORGANIZATION, ScopeLevel.AREA)

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "role": self.role,
            "organization_id": self.organization_id,
            "area_id": self.area_id,
            "inspector_id": self.inspector_id,
            "acting_as": self.acting_as,
        }


def _deny(reason: str, *, role, actor_id, message: str = "Access denied") -> AccessDeniedError:
    logger.warning("scope_denied reason=%s role=%s actor_id=%s", reason, role, actor_id)
    return AccessDeniedError(message, reason=reason)


def resolve_scope(
    *,
    role: str | None,
    organization_id: int | None,
    area_id: int | None,
    requested_org_id: int | None = None,
    actor_id: int | None = None,
) -> ResolvedScope:
    """Resolve the caller's scope from role claims and an optional act-as target.

    Raises:
        AccessDeniedError: unknown role, missing scope attribute for the role,
            or a requested organization inconsistent with the caller's own.
    """
    if role == Roles.SUPER_ADMIN:
        if requested_org_id is None:
            return ResolvedScope(level=ScopeLevel.PLATFORM, actor_id=actor_id, role=role)
        organization = db.session.get(Organization, requested_org_id)
        if organization is None:
            raise _deny("act_as_unknown_organization", role=role, actor_id=actor_id)
        logger.info("act_as actor_id=%s organization_id=%s", actor_id, requested_org_id)
        return ResolvedScope(
            level=ScopeLevel.ORGANIZATION,
            actor_id=actor_id,
            role=role,
            organization_id=organization.id,
            acting_as=True,
        )

    if role == Roles.ADMIN:
        if organization_id is None:
            raise _deny("admin_without_organization", role=role, actor_id=actor_id)
        if requested_org_id is not None and requested_org_id != organization_id:
            raise _deny("admin_cross_organization", role=role, actor_id=actor_id)
        return ResolvedScope(
            level=ScopeLevel.ORGANIZATION,
            actor_id=actor_id,
            role=role,
            organization_id=organization_id,
        )

    if role == Roles.MINI_ADMIN:
        if area_id is None:
            raise _deny("mini_admin_without_area", role=role, actor_id=actor_id)
        if requested_org_id is not None and requested_org_id != organization_id:
            raise _deny("mini_admin_cross_organization", role=role, actor_id=actor_id)
        area = db.session.get(Area, area_id)
        if area is None:
            raise _deny("mini_admin_unknown_area", role=role, actor_id=actor_id)
        if organization_id is not None and area.organization_id != organization_id:
            raise _deny("mini_admin_area_outside_organization", role=role, actor_id=actor_id)
        return ResolvedScope(
            level=ScopeLevel.AREA,
            actor_id=actor_id,
            role=role,
            organization_id=area.organization_id,
            area_id=area.id,
        )

    if role == Roles.INSPECTOR:
        if actor_id is None:
            raise _deny("inspector_without_identity", role=role, actor_id=actor_id)
        if requested_org_id is not None and requested_org_id != organization_id:
            raise _deny("inspector_cross_organization", role=role, actor_id=actor_id)
        return ResolvedScope(
            level=ScopeLevel.INSPECTOR,
            actor_id=actor_id,
            role=role,
            organization_id=organization_id,
            inspector_id=actor_id,
        )

    raise _deny("unknown_role", role=role, actor_id=actor_id)
