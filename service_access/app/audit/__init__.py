"""
Audit package.

Append-only audit trail for access decisions and configuration changes.

- models: AuditRecord and action names.
- emitter: AuditStore protocol, in-memory store and the emitter.
- postgres: asyncpg-backed store.
"""
