"""Taleweaver: interactive story progression engine."""
