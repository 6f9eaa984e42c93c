"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from uploadmatch.embedding.encoder import DEFAULT_MODEL

RankingMode = Literal["tfidf", "dense"]


def _get_default_db_path() -> Path:
    """Prefer a local data/ database when running from a checkout."""
    local_db = Path("data/uploadmatch.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".uploadmatch" / "uploadmatch.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    mode: RankingMode = "tfidf"
    model_name: str = DEFAULT_MODEL
    preview_chars: int = 500
    embed_chars: int = 2000
    max_text_chars: int = 20000
    candidate_pool: int = 15
    top_k: int = 5
    content_threshold: float = 0.05
    history_limit: int = 50
    workers: int = 4

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.mode not in ("tfidf", "dense"):
            raise ValueError(f"Unknown ranking mode: {self.mode!r}")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
