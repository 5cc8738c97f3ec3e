from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class Tenant(UUIDModel, TimestampedModel, table=True):
    """A company account ("empresa"); the billing unit."""

    __tablename__ = "tenants"

    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True)
    tax_id: str | None = Field(default=None, max_length=13)  # CUIT
    contact_email: str | None = Field(default=None)
    is_active: bool = Field(default=True)
