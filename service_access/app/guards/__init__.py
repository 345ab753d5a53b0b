"""
Enforcement package.

- decisions: Outcomes, decision codes and HTTP status mapping.
- chain: Request context, guards, GuardChain and AccessEnforcer.
"""
