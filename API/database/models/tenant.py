"""
Tenant (merchant) model.
Each tenant is a merchant account holding one subscription.
"""

from sqlalchemy import Column, String, Integer, Boolean, Index

from ..base import BaseModel


class Tenant(BaseModel):
    """
    Merchant account in the marketplace.

    Only the fields the billing loop needs are mapped here: the shop name
    used in notification payloads and the owner who receives them.
    """

    __tablename__ = 'tenants'

    name = Column(String(300), nullable=False)  # shop name
    slug = Column(String(100), unique=True, nullable=False, index=True)
    owner_id = Column(String(64), nullable=False, index=True)  # auth user id of the shop owner
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('ix_tenants_is_active', 'is_active'),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}', slug='{self.slug}')>"
