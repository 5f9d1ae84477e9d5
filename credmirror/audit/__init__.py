"""Structured audit logging for credential mutations and access control."""
