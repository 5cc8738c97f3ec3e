from pydantic import BaseModel, Field

from app.schemas.billing import SubscriptionRead
from app.schemas.common import IDModel, Timestamped


class TenantCreate(BaseModel):
    name: str
    slug: str = Field(pattern=r"^[a-z0-9][a-z0-9-]*$")
    tax_id: str | None = None
    contact_email: str | None = None


class TenantRead(IDModel, Timestamped):
    name: str
    slug: str
    tax_id: str | None = None
    contact_email: str | None = None
    is_active: bool


class TenantSignupRead(BaseModel):
    tenant: TenantRead
    subscription: SubscriptionRead
