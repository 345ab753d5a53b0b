"""
Country rollout package.

Per-country hard gates for business types, modules and features.
"""
