# storefront/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from storefront.app.services.pricing import (
    PriceCalculationService,
    PriceCalculationContext,
    FinalPrice,
    PricingServiceError,
    GroupedProductPriceError,
    ProductNotFoundError,
)
from storefront.app.services.discounts import (
    DiscountService,
    DiscountServiceError,
    DiscountNotFoundError,
    get_discount_amount,
    get_preferred_discount,
)
from storefront.app.services.shipping import (
    ShippingService,
    ShippingServiceError,
    NoShippingProviderError,
    ShippingMethodNotLoadedError,
)
from storefront.app.services.shipping_rates import (
    ShippingOption,
    ShippingOptionRequest,
    ShippingOptionResponse,
    ShippingRateComputationMethod,
    SHIPPING_PROVIDERS,
)
from storefront.app.services.cart import CartService, CartServiceError, OrganizedCartItem, BundleItemData
from storefront.app.services.categories import CategoryService, CategoryServiceError, CategoryNotFoundError
from storefront.app.services.customers import CustomerService, CustomerServiceError, CustomerProfile
from storefront.app.services.recurring import RecurringPaymentService, RecurringPaymentError
from storefront.app.services.reports import ReportService, ReportServiceError
from storefront.app.services.cache import CacheService

__all__ = [
    # Pricing
    "PriceCalculationService",
    "PriceCalculationContext",
    "FinalPrice",
    "PricingServiceError",
    "GroupedProductPriceError",
    "ProductNotFoundError",
    # Discounts
    "DiscountService",
    "DiscountServiceError",
    "DiscountNotFoundError",
    "get_discount_amount",
    "get_preferred_discount",
    # Shipping
    "ShippingService",
    "ShippingServiceError",
    "NoShippingProviderError",
    "ShippingMethodNotLoadedError",
    "ShippingOption",
    "ShippingOptionRequest",
    "ShippingOptionResponse",
    "ShippingRateComputationMethod",
    "SHIPPING_PROVIDERS",
    # Cart
    "CartService",
    "CartServiceError",
    "OrganizedCartItem",
    "BundleItemData",
    # Catalog
    "CategoryService",
    "CategoryServiceError",
    "CategoryNotFoundError",
    # Customers
    "CustomerService",
    "CustomerServiceError",
    "CustomerProfile",
    # Recurring payments
    "RecurringPaymentService",
    "RecurringPaymentError",
    # Reports
    "ReportService",
    "ReportServiceError",
    # Cache
    "CacheService",
]
