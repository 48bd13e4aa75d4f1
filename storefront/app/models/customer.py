from sqlalchemy import String, ForeignKey, Boolean, DateTime, Index, UniqueConstraint, JSON, Integer
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional, List
from storefront.app.core.base import Base, utcnow


class Address(Base):
    __tablename__ = 'addresses'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    country_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    address1: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_addresses_customer_id', 'customer_id'),
    )

    def get_full_name(self) -> str:
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts)


class Customer(Base):
    __tablename__ = 'customers'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    is_system_account: Mapped[bool] = mapped_column(Boolean, default=False)
    system_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    # Plain ids: addresses already reference customers
    billing_address_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shipping_address_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Generic attributes
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    discount_coupon_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    checkout_attribute_value_ids: Mapped[Optional[List[int]]] = mapped_column(JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_customers_email', 'email'),
        Index('ix_customers_system_name', 'system_name'),
    )


class CustomerRole(Base):
    __tablename__ = 'customer_roles'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    system_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False)


class CustomerRoleMapping(Base):
    __tablename__ = 'customer_role_mappings'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'))
    customer_role_id: Mapped[int] = mapped_column(ForeignKey('customer_roles.id', ondelete='CASCADE'))

    __table_args__ = (
        UniqueConstraint('customer_id', 'customer_role_id', name='uq_customer_role_mapping'),
        Index('ix_customer_role_mappings_customer_id', 'customer_id'),
    )
