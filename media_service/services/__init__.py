"""Request-scoped services: manifests, batches, archives and debug traces."""
