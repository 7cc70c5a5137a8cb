"""
Shared constants for the stock engine.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Product (catalog) statuses
# ---------------------------------------------------------------------------
PRODUCT_AVAILABLE = "AVAILABLE"
PRODUCT_SOLD_OUT = "SOLD_OUT"
PRODUCT_HIDDEN = "HIDDEN"

# ---------------------------------------------------------------------------
# Hold statuses
# ---------------------------------------------------------------------------
HOLD_ACTIVE = "ACTIVE"
HOLD_EXPIRED = "EXPIRED"

# ---------------------------------------------------------------------------
# Reservation (waitlist) statuses
# ---------------------------------------------------------------------------
RESERVATION_WAITING = "WAITING"
RESERVATION_PROMOTED = "PROMOTED"
RESERVATION_COMPLETED = "COMPLETED"
RESERVATION_CANCELLED = "CANCELLED"
RESERVATION_EXPIRED = "EXPIRED"

OPEN_RESERVATION_STATUSES = (RESERVATION_WAITING, RESERVATION_PROMOTED)

# ---------------------------------------------------------------------------
# Quantity policy (per hold / per reservation)
# ---------------------------------------------------------------------------
MIN_QUANTITY = 1
MAX_QUANTITY = 10

# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------
DEFAULT_PROMOTION_WINDOW_MINUTES = 10
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
