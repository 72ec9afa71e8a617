"""Fix pricing.

The first PROMOTIONAL_FIX_LIMIT completed fixes of a user are charged at
the promotional rate, every later one at the standard rate. The price is
recomputed from users.fix_count on every quote.
"""

PROMOTIONAL_FIX_PRICE = 300
STANDARD_FIX_PRICE = 500
PROMOTIONAL_FIX_LIMIT = 30

# Charged when a fix is confirmed without a quote.
DEFAULT_FIX_PRICE = PROMOTIONAL_FIX_PRICE


def get_fix_price(fix_count: int) -> int:
    """Price in cents for the user's next fix."""
    return PROMOTIONAL_FIX_PRICE if fix_count < PROMOTIONAL_FIX_LIMIT else STANDARD_FIX_PRICE


def is_promotional(fix_count: int) -> bool:
    return fix_count < PROMOTIONAL_FIX_LIMIT


def format_price(cents: int) -> str:
    return f"${cents / 100:.2f}"
