from datetime import date
from enum import Enum
from typing import Optional


class ValidityTier(str, Enum):
    EXPIRED = "expired"
    CRITICAL = "critical"   # up to 30 days left
    WARNING = "warning"     # 31 to 60
    CAUTION = "caution"     # 61 to 120
    CURRENT = "current"


# (upper bound in days, tier), checked in order
TIER_LIMITS = [
    (0, ValidityTier.EXPIRED),
    (30, ValidityTier.CRITICAL),
    (60, ValidityTier.WARNING),
    (120, ValidityTier.CAUTION),
]


def days_until_expiry(end_date: Optional[date], reference: Optional[date] = None) -> Optional[int]:
    if end_date is None:
        return None
    return (end_date - (reference or date.today())).days


def validity_tier(end_date: Optional[date], reference: Optional[date] = None) -> Optional[ValidityTier]:
    """
    Severity bucket of an agreement, computed at read time and never stored.
    """
    days = days_until_expiry(end_date, reference)
    if days is None:
        return None
    for limit, tier in TIER_LIMITS:
        if days <= limit:
            return tier
    return ValidityTier.CURRENT


def tier_day_range(tier: ValidityTier):
    """(min_days, max_days) of a tier, either bound may be None."""
    lower = None
    for limit, candidate in TIER_LIMITS:
        if candidate == tier:
            return lower, limit
        lower = limit + 1
    return lower, None


def pncp_file_link(control_number: Optional[str]) -> Optional[str]:
    """
    Link to the agreement file on PNCP. Control numbers look like
    42498600000171-1-000586/2023-000007 (cnpj-?-purchase/year-ata).
    """
    if not control_number:
        return None
    parts = control_number.split('-')
    if len(parts) < 4:
        return None
    purchase_year = parts[2].split('/')
    if len(purchase_year) < 2:
        return None
    try:
        purchase = int(purchase_year[0])
        ata = int(parts[3])
    except ValueError:
        return None
    cnpj, year = parts[0], purchase_year[1]
    return f"https://pncp.gov.br/pncp-api/v1/orgaos/{cnpj}/compras/{year}/{purchase}/atas/{ata}/arquivos/1"
