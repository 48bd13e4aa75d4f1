# storefront/app/services/customers.py
"""
Customer identity helpers: role checks, system accounts and name formatting.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import (
    ROLE_ADMINISTRATORS,
    ROLE_GUESTS,
    ROLE_REGISTERED,
    ROLE_SUPER_ADMINISTRATORS,
    SYSTEM_CUSTOMER_BACKGROUND_TASK,
    SYSTEM_CUSTOMER_PDF_CONVERTER,
    SYSTEM_CUSTOMER_SEARCH_ENGINE,
)
from storefront.app.core.exceptions import ServiceError
from storefront.app.models.customer import Address, Customer, CustomerRole, CustomerRoleMapping
from storefront.app.models.settings import GlobalSettings

GUEST_DISPLAY_NAME = "Guest"
COMING_FROM = "from"


class CustomerServiceError(ServiceError):
    pass


class CustomerNotFoundError(CustomerServiceError):
    def __init__(self, customer_id: int):
        super().__init__(f"Customer {customer_id} not found", 404)


@dataclass
class CustomerProfile:
    """A customer with the rows the name/role helpers need."""
    customer: Customer
    roles: List[CustomerRole] = field(default_factory=list)
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    addresses: List[Address] = field(default_factory=list)

    @property
    def role_ids(self) -> List[int]:
        return [r.id for r in self.roles if r.active]


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

def is_in_role(roles: Sequence[CustomerRole], role_system_name: str, only_active_roles: bool = True) -> bool:
    """Whether one of `roles` has the given system name (case-insensitive)."""
    if roles is None:
        raise ValueError("roles must not be None")
    if not role_system_name:
        raise ValueError("role_system_name must not be empty")

    wanted = role_system_name.casefold()
    for role in roles:
        if (role.system_name or "").casefold() == wanted:
            return not only_active_roles or role.active
    return False


def is_admin(roles: Sequence[CustomerRole], only_active_roles: bool = True) -> bool:
    return is_in_role(roles, ROLE_ADMINISTRATORS, only_active_roles)


def is_super_admin(roles: Sequence[CustomerRole], only_active_roles: bool = True) -> bool:
    return is_in_role(roles, ROLE_SUPER_ADMINISTRATORS, only_active_roles)


def is_registered(roles: Sequence[CustomerRole], only_active_roles: bool = True) -> bool:
    return is_in_role(roles, ROLE_REGISTERED, only_active_roles)


def is_guest(roles: Sequence[CustomerRole], only_active_roles: bool = True) -> bool:
    return is_in_role(roles, ROLE_GUESTS, only_active_roles)


# ---------------------------------------------------------------------------
# System accounts
# ---------------------------------------------------------------------------

def _is_system_account_named(customer: Customer, system_name: str) -> bool:
    if customer is None:
        raise ValueError("customer must not be None")
    if not customer.is_system_account or not customer.system_name:
        return False
    return customer.system_name.casefold() == system_name.casefold()


def is_background_task_account(customer: Customer) -> bool:
    return _is_system_account_named(customer, SYSTEM_CUSTOMER_BACKGROUND_TASK)


def is_search_engine_account(customer: Customer) -> bool:
    return _is_system_account_named(customer, SYSTEM_CUSTOMER_SEARCH_ENGINE)


def is_pdf_converter(customer: Customer) -> bool:
    return _is_system_account_named(customer, SYSTEM_CUSTOMER_PDF_CONVERTER)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

def _customer_own_name(customer: Customer) -> str:
    if customer.full_name and customer.full_name.strip():
        return customer.full_name.strip()
    parts = [p.strip() for p in (customer.first_name, customer.last_name) if p and p.strip()]
    return " ".join(parts)


def get_full_name(profile: Optional[CustomerProfile]) -> str:
    """Customer's own name, else the billing, shipping or first stored address name."""
    if profile is None or profile.customer is None:
        return ""

    name = _customer_own_name(profile.customer)
    if name:
        return name

    candidates = [profile.billing_address, profile.shipping_address]
    if profile.addresses:
        candidates.append(profile.addresses[0])
    for address in candidates:
        if address is not None:
            name = address.get_full_name()
            if name:
                return name.strip()
    return ""


def find_email(profile: Optional[CustomerProfile]) -> Optional[str]:
    if profile is None:
        return None
    for email in (
        profile.customer.email,
        profile.billing_address.email if profile.billing_address else None,
        profile.shipping_address.email if profile.shipping_address else None,
    ):
        if email and email.strip():
            return email.strip()
    return None


def get_display_name(profile: Optional[CustomerProfile]) -> Optional[str]:
    """Full name, user name or email; "Guest" for guests."""
    if profile is None:
        return None
    if is_guest(profile.roles):
        return GUEST_DISPLAY_NAME
    return get_full_name(profile) or profile.customer.username or find_email(profile)


def truncate(value: str, max_length: int, end: str = "...") -> str:
    if len(value) <= max_length:
        return value
    keep = max_length - len(end)
    if keep <= 0:
        return value[:max_length]
    return value[:keep].strip() + end


def format_user_name(
    profile: Optional[CustomerProfile],
    settings: GlobalSettings,
    strip_too_long: bool = False,
) -> Optional[str]:
    """Render the customer name per `customer_name_format` of the store settings."""
    name_format = settings.customer_name_format or "full_name"
    max_length = settings.customer_name_format_max_length or 0
    if profile is None:
        return ""
    if is_guest(profile.roles):
        return GUEST_DISPLAY_NAME

    customer = profile.customer
    result: Optional[str] = ""
    if name_format == "email":
        result = customer.email
    elif name_format == "full_name":
        result = get_full_name(profile)
    elif name_format == "username":
        result = customer.username
    elif name_format == "first_name":
        result = customer.first_name
    elif name_format == "name_and_city":
        first_name = customer.first_name
        last_name = customer.last_name
        city = customer.city
        if not first_name and profile.addresses:
            address = profile.addresses[0]
            first_name = address.first_name
            last_name = address.last_name
            city = address.city

        result = first_name or ""
        if last_name:
            result = f"{result} {last_name[0]}."
        if city:
            result = f"{result} {COMING_FROM} {city}"

    if strip_too_long and max_length > 0 and result and len(result) > max_length:
        result = truncate(result, max_length)
    return result


class CustomerService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_customer(self, customer_id: int) -> Customer:
        customer = await self.session.get(Customer, customer_id)
        if customer is None or customer.deleted:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def get_roles(self, customer_id: int) -> List[CustomerRole]:
        result = await self.session.execute(
            select(CustomerRole)
            .join(CustomerRoleMapping, CustomerRoleMapping.customer_role_id == CustomerRole.id)
            .where(CustomerRoleMapping.customer_id == customer_id)
            .order_by(CustomerRole.id)
        )
        return list(result.scalars().all())

    async def get_role_ids(self, customer_id: Optional[int], only_active: bool = True) -> List[int]:
        if customer_id is None:
            return []
        roles = await self.get_roles(customer_id)
        return [r.id for r in roles if r.active or not only_active]

    async def load_profile(self, customer_id: int) -> CustomerProfile:
        customer = await self.get_customer(customer_id)
        roles = await self.get_roles(customer_id)
        result = await self.session.execute(
            select(Address).where(Address.customer_id == customer_id).order_by(Address.id)
        )
        addresses = list(result.scalars().all())
        billing = await self.session.get(Address, customer.billing_address_id) if customer.billing_address_id else None
        shipping = await self.session.get(Address, customer.shipping_address_id) if customer.shipping_address_id else None
        return CustomerProfile(
            customer=customer,
            roles=roles,
            billing_address=billing,
            shipping_address=shipping,
            addresses=addresses,
        )

    async def add_to_role(self, customer_id: int, role_id: int) -> None:
        existing = await self.session.execute(
            select(CustomerRoleMapping).where(
                CustomerRoleMapping.customer_id == customer_id,
                CustomerRoleMapping.customer_role_id == role_id,
            )
        )
        if existing.scalar_one_or_none() is None:
            self.session.add(CustomerRoleMapping(customer_id=customer_id, customer_role_id=role_id))
            await self.session.flush()
