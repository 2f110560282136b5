import logging
import sys
from functools import lru_cache

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EditorSettings(BaseSettings):
    """
    Tunables for matching, diffing and storage.

    Every field can be overridden from the environment with the
    ESCRIBANO_ prefix (e.g. ESCRIBANO_CONTEXT_WINDOW=120).
    """

    model_config = SettingsConfigDict(env_prefix="ESCRIBANO_", env_file=".env", extra="ignore")

    # Matching
    context_window: int = Field(80, ge=0, description="Characters searched for contextBefore/contextAfter.")
    fuzzy_min_query_length: int = Field(100, ge=1)
    head_tail_length: int = Field(30, ge=1)
    fuzzy_tolerance: float = Field(0.2, gt=0, lt=1)
    whole_word_max_length: int = Field(30, ge=1)

    # Diff
    text_diff_min_length: int = Field(60, ge=1, description="Text runs at least this long get a character diff.")

    # Section rewrites
    section_rewrite_max_fraction: float = Field(0.8, gt=0, le=1, description="Widest section a rewrite may replace, as a share of the document.")
    section_rewrite_max_size: int = Field(50000, ge=1)

    # Collaborators
    schema_cache_ttl_seconds: float = 300.0
    store_root: str = "./documents"
    store_max_retries: int = Field(5, ge=1)

    # Surfaces
    default_author: str = "Escribano"
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> EditorSettings:
    return EditorSettings()


def configure_logging(settings: EditorSettings = None):
    """
    Sends all log output to stderr. The MCP server speaks JSON-RPC over
    stdout and the CLI prints results there, so stdout must stay clean.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    logging.basicConfig(stream=sys.stderr, level=level, force=True)

    renderer = structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
