# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Central configuration – configurable via:
1. Environment variables (STRATA_ prefix)
2. .env file
3. <workspace>/.strata/config.json (per-workspace overrides)
"""
import json
import sys
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings

CONFIG_DIR = ".strata"
CONFIG_FILENAME = "config.json"

CHUNK_LINES_RANGE = (20, 400)
OVERLAP_LINES_RANGE = (0, 200)
TOP_K_RANGE = (1, 20)


def clamp(value: int, bounds: tuple[int, int]) -> int:
    lo, hi = bounds
    return max(lo, min(hi, value))


class Config(BaseSettings):
    # ── Workspace ────────────────────────────────
    workspace_roots: list[str] = []
    exclude_globs: list[str] = []
    max_files: int = 10_000
    max_file_chars: int = 600_000

    # ── Chunking ─────────────────────────────────
    chunk_lines: int = 80
    chunk_overlap_lines: int = 20
    max_chunks: int = 2000

    # ── Embeddings ───────────────────────────────
    embedding_provider: Literal["local", "openai", "huggingface"] = "local"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    huggingface_api_key: str = ""
    embedding_batch_size: int = 64
    embedding_max_retries: int = 3

    # ── Retrieval ────────────────────────────────
    top_k: int = 6

    # ── Change tracking ──────────────────────────
    watch: bool = True
    reindex_debounce_seconds: float = 1.0

    # ── Server / Transport ───────────────────────
    transport: Literal["stdio", "sse"] = "stdio"
    sse_port: int = 8081

    class Config:
        env_prefix = "STRATA_"
        env_file = ".env"

    @classmethod
    def load(cls, workspace_root: Optional[Path] = None) -> "Config":
        """Load config: ENV -> .env -> <workspace>/.strata/config.json."""
        config = cls()

        root = workspace_root
        if root is None and config.workspace_roots:
            root = Path(config.workspace_roots[0])
        if root is None:
            return config

        config_file = Path(root) / CONFIG_DIR / CONFIG_FILENAME
        if config_file.exists():
            try:
                overrides = json.loads(config_file.read_text())
                for key, value in overrides.items():
                    if hasattr(config, key) and value != "":
                        setattr(config, key, value)
            except Exception as e:
                print(f"Warning: Config file error in {config_file}: {e}", file=sys.stderr)

        return config

    @property
    def effective_chunk_lines(self) -> int:
        return clamp(self.chunk_lines, CHUNK_LINES_RANGE)

    @property
    def effective_overlap_lines(self) -> int:
        return clamp(self.chunk_overlap_lines, OVERLAP_LINES_RANGE)

    @property
    def effective_top_k(self) -> int:
        return clamp(self.top_k, TOP_K_RANGE)

    @property
    def active_embedding_model(self) -> str:
        if self.embedding_provider == "openai":
            return self.openai_embedding_model
        return self.embedding_model

    def to_safe_dict(self) -> dict:
        """Config without secrets (for display)."""
        d = self.model_dump()
        if d.get("openai_api_key"):
            d["openai_api_key"] = d["openai_api_key"][:8] + "..."
        if d.get("huggingface_api_key"):
            d["huggingface_api_key"] = "***set***"
        return d
