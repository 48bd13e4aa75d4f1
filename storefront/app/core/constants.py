"""
Shared constants for the storefront backend.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
PERCENT_BASE = Decimal("100")

# Quantity used to find the "lowest possible" price: every tier price applies.
MAX_QUANTITY = 2_147_483_647

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
PRODUCT_TYPE_SIMPLE = "simple"
PRODUCT_TYPE_GROUPED = "grouped"
PRODUCT_TYPE_BUNDLE = "bundle"

TIER_PRICE_FIXED = "fixed"
TIER_PRICE_PERCENTAL = "percental"

ATTRIBUTE_VALUE_SIMPLE = "simple"
ATTRIBUTE_VALUE_PRODUCT_LINKAGE = "product_linkage"

# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------
DISCOUNT_ASSIGNED_TO_SKUS = "assigned_to_skus"
DISCOUNT_ASSIGNED_TO_CATEGORIES = "assigned_to_categories"

DISCOUNT_LIMITATION_N_TIMES_ONLY = "n_times_only"
DISCOUNT_LIMITATION_N_TIMES_PER_CUSTOMER = "n_times_per_customer"

# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------
ROLE_SUPER_ADMINISTRATORS = "SuperAdmins"
ROLE_ADMINISTRATORS = "Administrators"
ROLE_REGISTERED = "Registered"
ROLE_GUESTS = "Guests"

SYSTEM_CUSTOMER_BACKGROUND_TASK = "BackgroundTask"
SYSTEM_CUSTOMER_SEARCH_ENGINE = "SearchEngine"
SYSTEM_CUSTOMER_PDF_CONVERTER = "PdfConverter"

# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
ORDER_STATUSES = ("pending", "processing", "complete", "cancelled")
PAYMENT_STATUSES = ("pending", "authorized", "paid", "partially_refunded", "refunded", "voided")
SHIPPING_STATUSES = ("shipping_not_required", "not_yet_shipped", "partially_shipped", "shipped", "delivered")

# ---------------------------------------------------------------------------
# Recurring payments
# ---------------------------------------------------------------------------
CYCLE_PERIOD_DAYS = "days"
CYCLE_PERIOD_WEEKS = "weeks"
CYCLE_PERIOD_MONTHS = "months"
CYCLE_PERIOD_YEARS = "years"

# ---------------------------------------------------------------------------
# Shipping
# ---------------------------------------------------------------------------
SHIPPING_FIXED_RATE = "Shipping.FixedRate"
SHIPPING_BY_WEIGHT = "Shipping.ByWeight"

# Chunk size used when refreshing denormalized flags in bulk
BATCH_CHUNK_SIZE = 100
