"""Jurisdiction-specific filing documents built from per-currency summaries."""
