# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Central configuration – configurable via:
1. Environment variables (FRAGLENS_ prefix)
2. .env file
3. JSON override file (FRAGLENS_CONFIG_FILE, default ~/.fraglens/config.json)
"""
import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILE = Path(
    os.environ.get("FRAGLENS_CONFIG_FILE", str(Path.home() / ".fraglens" / "config.json"))
)


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FRAGLENS_", env_file=".env", extra="ignore")

    # ── Document store ───────────────────────────
    vectorstore_path: str = "./data/vectorstore"
    collection_name: str = "fragments"
    in_memory: bool = False

    # ── Embeddings ───────────────────────────────
    embedding_provider: Literal["local", "openai"] = "local"
    embedding_model: str = "all-MiniLM-L6-v2"
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"

    # ── Search ───────────────────────────────────
    default_k: int = Field(default=5, ge=1)
    over_fetch_factor: int = Field(default=10, ge=1)
    fallback_scan_limit: int = Field(default=1000, ge=1)
    max_fetch_k: int = Field(default=200, ge=1)
    hybrid_diversity_boost: float = Field(default=1.05, gt=0)

    # ── Timeouts (seconds, None = wait forever) ──
    embed_timeout: Optional[float] = 30.0
    store_timeout: Optional[float] = 15.0

    # ── Result cache ─────────────────────────────
    cache_enabled: bool = True
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = Field(default=512, ge=1)

    # ── Access tracking ──────────────────────────
    access_queue_size: int = Field(default=256, ge=1)

    # ── Chunking ─────────────────────────────────
    chunk_strategy: Literal["heading", "fixed", "hybrid"] = "hybrid"
    chunk_max_chars: int = 2000
    chunk_overlap: int = 200
    chunk_min_chars: int = 50

    # ── Logging ──────────────────────────────────
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> "Config":
        """Load config: ENV -> .env -> config.json overrides."""
        config = cls()

        if CONFIG_FILE.exists():
            try:
                overrides = json.loads(CONFIG_FILE.read_text())
                for key, value in overrides.items():
                    if hasattr(config, key) and value != "":
                        setattr(config, key, value)
            except (OSError, ValueError) as e:
                logger.warning("Config file error in %s: %s", CONFIG_FILE, e)

        return config

    def save(self):
        """Persist current config as the JSON override file."""
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        CONFIG_FILE.write_text(
            json.dumps(self.model_dump(), indent=2, default=str)
        )

    def to_safe_dict(self) -> dict:
        """Config without secrets (for stats output)."""
        d = self.model_dump()
        if d.get("openai_api_key"):
            d["openai_api_key"] = d["openai_api_key"][:8] + "..."
        return d

    @property
    def active_embedding_model(self) -> str:
        if self.embedding_provider == "local":
            return self.embedding_model
        return self.openai_embedding_model
