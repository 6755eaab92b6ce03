"""Data handling utilities for the document corpus.

The corpus and the reference datasets contain personal names and
financial data. These utilities keep the data directory private and
keep document content out of log lines.
"""

import os
from pathlib import Path


def secure_directory(path: Path, mode: int = 0o700) -> None:
    """Create directory with restrictive permissions. Creates parent dirs if needed."""
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, mode)


def secure_file(path: Path, mode: int = 0o600) -> None:
    """Set restrictive permissions on a file."""
    if path.exists():
        os.chmod(path, mode)


def sanitize_log_entry(
    operation: str, subject: str, duration_ms: float, outcome: str,
) -> str:
    """Create a log entry for a model call.

    Carries the operation, the document id or batch label, timing and the
    outcome, never the text sent or received.
    """
    return f"[llm] {operation} {subject} {outcome} {duration_ms:.1f}ms"
