"""
rowgate: keyed-record access to positional spreadsheet rows.

Every call to the row store is admitted against a shared rate budget,
retried with classification-aware backoff, and read through a TTL cache
that writes invalidate.
"""

__version__ = "0.1.0"
