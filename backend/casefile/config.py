"""Application settings loaded from environment variables using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Casefile pipeline configuration.

    All settings can be overridden via environment variables.
    The API key defaults to None and is validated when the extraction
    client first calls the model, not at startup.
    """

    ANTHROPIC_API_KEY: str | None = None
    LLM_MODEL: str = "claude-sonnet-4-20250514"
    LLM_MAX_TOKENS: int = 8192
    LLM_TIMEOUT_SECONDS: float = 120.0

    DATABASE_DIR: str = "./data"
    DATA_DIR: str = "../DataSources"

    # Extraction
    BATCH_SIZE: int = 10
    MAX_WORKERS: int = 5
    REQUESTS_PER_MINUTE: int = 50
    BATCH_PAUSE_SECONDS: float = 1.0
    # A processing claim older than this is taken over by the next run.
    CLAIM_LEASE_SECONDS: float = 600.0
    MAX_EXTRACTION_CHARS: int = 100_000

    # Cross-reference matching
    MATCH_THRESHOLD: float = 0.7
    MATCH_TOP_K: int = 5

    # Alias grouping
    DEDUP_MIN_CONFIDENCE: float = 0.6

    # Layer 0 of the co-occurrence graph
    ROOT_ENTITY_NAME: str = "Jeffrey Epstein"
    ROOT_ENTITY_TYPE: str = "person"
    ROOT_ENTITY_ALIASES: list[str] = ["Jeffrey E. Epstein", "J. Epstein", "Epstein", "JE"]

    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def database_path(self) -> str:
        """Path of the SQLite database file inside DATABASE_DIR."""
        return str(Path(self.DATABASE_DIR) / "casefile.db")
