"""
Cache package.

Redis-backed cache of module access decisions keyed on tenant, module,
tier, country and add-on state version.
"""
