"""
Tier-aware module pricing in a country's currency and tax regime.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Mapping, Union

from shared.errors import PricingError

from ..rbac.scope import normalize_country_code
from .matrix import ModuleMatrix
from .models import CountryPricingConfig, ModuleAccess, PriceQuote, Tier

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def price_of(
    module_id: str,
    tier: Union[Tier, str],
    country_code: str,
    matrix: ModuleMatrix,
    pricing: Mapping[str, CountryPricingConfig],
) -> PriceQuote:
    """Quote the monthly price of a module for a tier in a country.

    Tax is added on top of the converted amount. Countries whose tax
    depends on the buyer's nexus get a pre-tax quote with no total; no
    fallback rate is ever applied.
    """
    try:
        tier = Tier.parse(tier)
    except ValueError:
        raise PricingError("Unknown tier", {"tier": str(tier)})

    module = matrix.get(module_id)
    if module is None:
        raise PricingError("Unknown module", {"module_id": module_id})

    if module.access_for(tier) is ModuleAccess.LOCKED:
        raise PricingError(
            "Module not offered at tier",
            {"module_id": module_id, "tier": tier.value},
        )

    base_usd = module.prices_usd.get(tier)
    if base_usd is None:
        raise PricingError(
            "Module has no price for tier",
            {"module_id": module_id, "tier": tier.value},
        )

    code = normalize_country_code(country_code)
    config = pricing.get(code) if code else None
    if config is None:
        raise PricingError("No pricing configured for country", {"country_code": country_code})

    try:
        amount = quantize_money(Decimal(base_usd) * Decimal(config.exchange_rate))
    except InvalidOperation:
        raise PricingError("Invalid price configuration", {"module_id": module_id, "country_code": code})

    if config.is_nexus_dependent:
        return PriceQuote(
            module_id=module_id,
            tier=tier,
            country_code=code,
            base_usd=Decimal(base_usd),
            currency=config.currency,
            exchange_rate=Decimal(config.exchange_rate),
            amount=amount,
            tax_name=config.tax_name,
            tax_rate=None,
            tax_amount=None,
            total=None,
            tax_computed_externally=True,
        )

    tax_rate = Decimal(config.tax_rate)
    tax_amount = quantize_money(amount * tax_rate / HUNDRED)
    return PriceQuote(
        module_id=module_id,
        tier=tier,
        country_code=code,
        base_usd=Decimal(base_usd),
        currency=config.currency,
        exchange_rate=Decimal(config.exchange_rate),
        amount=amount,
        tax_name=config.tax_name,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=amount + tax_amount,
        tax_computed_externally=False,
    )
