# backend/config/constants.py

# -----------------------------
# DELIVERY FEE FALLBACK
# -----------------------------
# Used when the checkout location cannot be resolved.

FREE_DELIVERY_THRESHOLD = 500
DEFAULT_DELIVERY_FEE = 50

DEFAULT_DELIVERY_DAYS = 2

# -----------------------------
# DELIVERY OTP
# -----------------------------

DELIVERY_OTP_LENGTH = 6
OTP_VERIFY_MAX_ATTEMPTS = 10          # per agent + order, per window
OTP_VERIFY_WINDOW_SECONDS = 60

# -----------------------------
# WALLET / COUPON CONCURRENCY
# -----------------------------

WALLET_DEBIT_MAX_ATTEMPTS = 3
COUPON_HOLD_STALE_SECONDS = 60       # per-user coupon hold left by a dead checkout

# -----------------------------
# REVENUE SPLIT
# -----------------------------

# Admin-direct catalog items (no store) go entirely to the platform.
NO_STORE_ADMIN_CUT_PERCENT = 100
STORE_DEFAULT_ADMIN_CUT_PERCENT = 0

# -----------------------------
# DASHBOARDS
# -----------------------------

WEEKLY_WINDOW_DAYS = 7
RECENT_ORDERS_LIMIT = 5
COD_PENDING_ORDERS_LIMIT = 20
WALLET_LEDGER_PAGE = 50
