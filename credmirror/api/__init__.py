"""HTTP surface: credential CRUD guarded by the management key."""
