"""
Configuration store package.

- snapshot: VersionedRecord, ConfigSnapshot and ConfigurationStore.
- defaults: Seeded module, rollout and pricing tables plus the JSON seed loader.
"""
