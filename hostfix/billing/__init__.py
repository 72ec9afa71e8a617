"""Fix pricing, payment customers, and payment webhook handling."""

from hostfix.billing.pricing import DEFAULT_FIX_PRICE, get_fix_price

__all__ = ["DEFAULT_FIX_PRICE", "get_fix_price"]
