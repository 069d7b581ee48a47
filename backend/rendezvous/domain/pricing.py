"""Amount calculations. All amounts are integers in minor currency units."""

VAT_RATE = 0.20
CANCELLATION_FEE = 1000


def vat_amount(amount_ht: int, rate: float = VAT_RATE) -> int:
    return round(amount_ht * rate)


def total_with_vat(amount_ht: int, rate: float = VAT_RATE) -> int:
    return amount_ht + vat_amount(amount_ht, rate)


def base_amount(duration_minutes: int, price_per_minute: int) -> int:
    return duration_minutes * price_per_minute


def pro_share(amount_ht: int) -> int:
    """Professional's two-thirds of the pre-tax amount."""
    return round(amount_ht * 2 / 3)


def platform_fee(amount_ht: int) -> int:
    """Platform's third of the pre-tax amount."""
    return round(amount_ht / 3)


def payout_amount(amount_ht: int, amount_total: int, vat_registered: bool) -> int:
    """Amount transferred to the pro; VAT-registered pros also collect the tax."""
    share = pro_share(amount_ht)
    if vat_registered:
        share += amount_total - amount_ht
    return share


def late_cancellation_refund(amount_total: int, fee: int = CANCELLATION_FEE) -> int:
    return max(0, amount_total - fee)
