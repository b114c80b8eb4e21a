"""Catalogue tooling: CSV import and store ingest for the phones table."""
