"""
Entitlements package.

Module x tier access matrix, add-on grants, tier feature flags and
country-aware pricing.

- models: Tiers, module definitions, grants, tenants and price quotes.
- matrix: Module access checks and tier feature lookups.
- pricing: Price quotes with currency conversion and tax.
"""
