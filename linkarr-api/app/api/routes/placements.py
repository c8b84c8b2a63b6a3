# app/api/routes/placements.py
# Read-only views over the state database:
# - GET /api/summary
# - GET /api/placements/{key_hex}
# - GET /api/runs?limit=
import os
from pathlib import Path
from typing import Iterator, List

from fastapi import APIRouter, Depends, HTTPException

from app.core.config import load_settings
from app.repositories.db import PlacementState, StateStore
from app.schemas.media import PlacementInfo, RunInfo, StoreSummary
from app.services.digest import KEY_SIZE

api_router = APIRouter(tags=["placements"])     # mounted under /api in main


def db_path() -> Path:
    """LINKARR_DB wins; otherwise [paths].database from linkarr.toml."""
    env = os.getenv("LINKARR_DB")
    if env:
        return Path(env).expanduser()
    return load_settings().database


def get_store() -> Iterator[StateStore]:
    path = db_path()
    # opening would create an empty database; a status view must not do that
    if not path.is_file():
        raise HTTPException(503, f"state database not found: {path}")
    store = StateStore(path)
    try:
        yield store
    finally:
        store.close()


@api_router.get("/summary", response_model=StoreSummary)
def summary(store: StateStore = Depends(get_store)):
    counts = store.state_counts()
    return StoreSummary(
        discovered=counts[PlacementState.DISCOVERED],
        copied=counts[PlacementState.COPIED],
        cached_paths=store.cache_size(),
        runs=[RunInfo(**r) for r in store.recent_runs(5)],
    )


@api_router.get("/placements/{key_hex}", response_model=PlacementInfo)
def get_placement(key_hex: str, store: StateStore = Depends(get_store)):
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        raise HTTPException(404, "not a content key")
    if len(key) != KEY_SIZE:
        raise HTTPException(404, "not a content key")
    row = store.get_placement(key)
    if row is None:
        raise HTTPException(404, "no placement for this key")
    return PlacementInfo(
        content_key=key.hex(),
        state=row["state"].name.lower(),
        run_id=row["run_id"],
        source_path=row["source_path"],
        target_path=row["target_path"],
        updated_at=row["updated_at"],
    )


@api_router.get("/runs", response_model=List[RunInfo])
def list_runs(limit: int = 20, store: StateStore = Depends(get_store)):
    # validate paging params
    if not (1 <= limit <= 1000):
        raise HTTPException(400, "limit must be 1..1000")
    return [RunInfo(**r) for r in store.recent_runs(limit)]
