"""Shared utilities: structured logging and value redaction."""
