"""
Multi-Tenant Service: Tenant Scoping Helpers

WHY: Every document belongs to exactly one organization. Fetches must be
filtered by org_id in the same query that loads the row, so an id from
another tenant is indistinguishable from an id that does not exist.

SECURITY INVARIANTS:
1. Every authenticated request has g.org_id set (by @require_auth)
2. Services receive org_id explicitly; they never read it from a payload
3. A row owned by another tenant is reported as NotFound, never Forbidden
4. Cross-tenant access attempts are logged (server side only)

USAGE:
    from docflow.services.tenant_service import get_scoped

    quotation = get_scoped(Quotation, quotation_id, org_id, for_update=True)
"""

from flask import current_app, g

from ..errors import NotFoundError
from ..extensions import db
from ..models import Organization
from .concurrency import lock_for_update


class TenantAccessError(Exception):
    """Raised when tenant context is missing or the tenant is inactive."""
    pass


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    SECURITY: Raises TenantAccessError if org_id not set.
    This should never happen after @require_auth, but is a safety check.
    """
    if not hasattr(g, 'org_id') or g.org_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.org_id


def scoped_query(model, org_id: int):
    """Base query for a tenant-owned model, filtered by org_id."""
    if org_id is None:
        raise TenantAccessError("Tenant context not established")
    query = db.session.query(model).filter(model.org_id == org_id)
    if hasattr(model, "deleted_at"):
        query = query.filter(model.deleted_at.is_(None))
    return query


def get_scoped(model, entity_id, org_id: int, *, for_update: bool = False, label: str | None = None):
    """
    Load one tenant-owned row or raise NotFoundError.

    Args:
        model: Mapped class carrying an org_id column
        entity_id: Primary key from the request
        org_id: Caller's tenant (from the session, never the payload)
        for_update: Lock the row for the rest of the transaction
        label: Human name used in the error message

    Raises:
        NotFoundError: absent, soft-deleted, or owned by another tenant
    """
    label = label or model.__name__
    query = scoped_query(model, org_id).filter(model.id == entity_id)
    if for_update:
        query = lock_for_update(query)
    entity = query.first()

    if entity is None:
        _log_cross_tenant_attempt(model, entity_id, org_id)
        raise NotFoundError(f"{label} not found", {"id": entity_id})
    return entity


def _log_cross_tenant_attempt(model, entity_id, org_id: int) -> None:
    """Log when the id exists under a different tenant."""
    owner = (
        db.session.query(model.org_id)
        .filter(model.id == entity_id)
        .scalar()
    )
    if owner is not None and owner != org_id:
        current_app.logger.warning(
            "Cross-tenant access denied: %s %s (owner org %s) requested by org %s",
            model.__name__, entity_id, owner, org_id,
        )


def validate_org_active(org_id: int) -> Organization:
    """
    Validate that an organization exists and is active.

    Raises:
        TenantAccessError if org doesn't exist or is inactive
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()

    if not org:
        raise TenantAccessError("Organization not found")

    if not org.is_active:
        raise TenantAccessError("Organization is not active")

    return org
