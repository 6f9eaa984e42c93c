"""FastAPI application exposing indexing and matching over HTTP."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from uploadmatch.config import AppConfig
from uploadmatch.engine import RelevanceEngine
from uploadmatch.index.storage import SQLiteStore
from uploadmatch.models import QueryContext

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="uploadmatch", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class MatchPayload(BaseModel):
    context: str
    accept: str | None = None
    page_url: str | None = None
    host: str | None = None
    top_k: int = 5
    db: Path | None = None


class IndexPayload(BaseModel):
    path: str
    incremental: bool = False
    db: Path | None = None


class HistoryPayload(BaseModel):
    document_id: str
    host: str | None = None
    page_url: str | None = None
    context: str = ""
    db: Path | None = None


class DbPayload(BaseModel):
    db: Path | None = None


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_engine(db_path: Path) -> tuple[RelevanceEngine, SQLiteStore]:
    store = SQLiteStore(db_path)
    return RelevanceEngine(store, store, store, config=AppConfig(db_path=db_path)), store


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _serialize(result: Any) -> Dict[str, Any]:
    return {
        "id": result.document_id,
        "name": result.name,
        "type": result.type,
        "score": result.final_score,
        "historyCount": result.history_count,
        "profile": result.profile,
    }


@app.post("/match")
async def match_files(payload: MatchPayload) -> dict[str, List[Dict[str, Any]]]:
    top_k = max(1, min(payload.top_k, 50))
    resolved_db = _resolve_db_path(payload.db)
    if not resolved_db.exists():
        return {"results": []}

    context = QueryContext.from_request(
        payload.context, accept=payload.accept, page_url=payload.page_url, host=payload.host
    )
    engine, store = _open_engine(resolved_db)
    try:
        results = engine.rank(context, top_k)
    finally:
        store.close()
    return {"results": [_serialize(result) for result in results]}


def _run_index_job(root: Path, incremental: bool, resolved_db: Path) -> dict[str, Any]:
    engine, store = _open_engine(resolved_db)
    try:
        report = engine.index_folder(root, incremental=incremental)
        total = engine.count()
    finally:
        store.close()
    return {
        "indexed": report.indexed,
        "skipped": report.skipped,
        "failed": report.failed,
        "deleted": report.deleted,
        "count": total,
    }


@app.post("/index")
async def index_folder(payload: IndexPayload) -> dict[str, Any]:
    clean_path = payload.path.strip().replace("\r", "").replace("\n", "")
    if not clean_path:
        raise HTTPException(status_code=400, detail="No path provided")
    if "\0" in clean_path:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")

    root = Path(os.path.realpath(os.path.expanduser(clean_path)))
    if not root.exists():
        raise HTTPException(status_code=404, detail="Path not found: %s" % clean_path)
    if not root.is_dir():
        raise HTTPException(status_code=400, detail="Path must be a directory: %s" % clean_path)

    resolved_db = _resolve_db_path(payload.db)
    _ensure_db_parent(resolved_db)

    try:
        stats = await asyncio.to_thread(_run_index_job, root, payload.incremental, resolved_db)
    except Exception as exc:  # pragma: no cover - defensive
        LOGGER.exception("Indexing failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {"status": "ok", "db": str(resolved_db), "stats": stats}


@app.post("/history")
async def track_upload(payload: HistoryPayload) -> dict[str, str]:
    context = QueryContext.from_request("", page_url=payload.page_url, host=payload.host)
    if not context.host:
        raise HTTPException(status_code=400, detail="A host or a valid page_url is required")

    resolved_db = _resolve_db_path(payload.db)
    _ensure_db_parent(resolved_db)
    engine, store = _open_engine(resolved_db)
    try:
        engine.record_upload(
            payload.document_id,
            context.host,
            page_url=payload.page_url or "",
            context=payload.context,
        )
    finally:
        store.close()
    return {"status": "ok"}


@app.get("/count")
async def count_files(db: Path | None = None) -> dict[str, int]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"count": 0}
    engine, store = _open_engine(resolved_db)
    try:
        return {"count": engine.count()}
    finally:
        store.close()


@app.post("/clear")
async def clear_index(payload: DbPayload) -> dict[str, Any]:
    resolved_db = _resolve_db_path(payload.db)
    if not resolved_db.exists():
        raise HTTPException(status_code=404, detail="Database not found")
    engine, store = _open_engine(resolved_db)
    try:
        engine.clear()
        remaining = engine.count()
    finally:
        store.close()
    return {"status": "ok", "count": remaining}
