from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from app.api.deps import get_current_tenant, get_db
from app.models.tenant import Tenant
from app.schemas.billing import SubscriptionRead
from app.schemas.tenant import TenantCreate, TenantRead, TenantSignupRead
from app.services.tenant import TenantService

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("", response_model=TenantSignupRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, session: Session = Depends(get_db)) -> TenantSignupRead:
    service = TenantService(session)
    try:
        tenant, subscription = service.signup(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return TenantSignupRead(
        tenant=TenantRead.model_validate(tenant),
        subscription=SubscriptionRead.model_validate(subscription),
    )


@router.get("/me", response_model=TenantRead)
def get_my_tenant(tenant: Tenant = Depends(get_current_tenant)) -> TenantRead:
    return TenantRead.model_validate(tenant)
