"""Cross-referencing of canonical entities against loan, contribution and grant records."""
