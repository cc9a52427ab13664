from dataclasses import dataclass
from uuid import UUID

from fastapi import Header, HTTPException, status

from ltip_admin.core.context import set_actor_id, set_tenant_id
from ltip_admin.core.settings import settings
from ltip_admin.core.tenant import normalize_org_id


@dataclass(slots=True)
class TenantContext:
    org_id: str


async def get_tenant_context(
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> TenantContext:
    mode = settings.tenancy_mode
    if mode == "multi":
        if not tenant_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Tenant resolution failed: provide X-Tenant-ID header",
            )
        try:
            candidate = normalize_org_id(tenant_id)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        set_tenant_id(candidate)
        return TenantContext(org_id=candidate)

    default_org = settings.default_org_id
    set_tenant_id(default_org)
    return TenantContext(org_id=default_org)


async def get_actor_id(
    actor_id: str | None = Header(default=None, alias="X-Actor-ID"),
) -> UUID | None:
    """Optional acting administrator, recorded on audit rows and processed events."""
    if not actor_id:
        return None
    try:
        parsed = UUID(actor_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID must be a UUID",
        ) from exc
    set_actor_id(str(parsed))
    return parsed
