"""Ingestion of the OCR corpus and the reference datasets.

Provides streaming row readers for CSV, JSON, JSON Lines and XLSX files,
the reference-table loader, and the corpus splitter.
"""
