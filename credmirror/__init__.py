"""credmirror — PostgreSQL-backed credential store mirrored to a watched auth directory."""

__version__ = "0.1.0"
