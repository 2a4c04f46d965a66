"""Dynamic-schema object layer: registry, schema evolution, identity, instances, queries."""
