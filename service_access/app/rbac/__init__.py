"""
Role-based access control package.

- registry: Roles, permissions, legacy aliases and permission lookup.
- scope: Actor model, country normalization and scope resolution.
"""
