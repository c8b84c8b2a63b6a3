# app/services/pipeline.py
"""
Link pass: traversal -> digest pool -> commit stage.

Stages are threads joined by unbounded queue.Queue hand-offs. Each stage is told
it's done by one _END marker per worker, pushed once everything upstream has
drained. The state store is the only thing the stages share; its
compare-and-transition is what keeps a given content from being placed twice.

Any error aborts the run: the first exception is recorded, the abort event is
set, every stage keeps draining its queue so nothing blocks, and run_pipeline
re-raises once all threads are joined. Transitions already committed stay
committed.
"""
from __future__ import annotations

import os
import queue
import threading
from collections import Counter
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from app.core.config import LinkSettings
from app.core.errors import CommitError, TraversalError
from app.core.logs import LOGGER, RunLogger, run_logger
from app.repositories.db import PlacementState, StateStore
from app.schemas.media import WorkItem
from app.services.digest import sha256_file
from app.services.metadata import TimestampResolver
from app.utils.fs import ensure_dir, fallback_name, same_content, time_path

_END = object()

Digest = Callable[[str], bytes]


class RunStats:
    """Per-run counters; shared by all workers, guarded by its own lock."""

    FIELDS = ("scanned", "hashed", "cache_hits", "linked", "fallback_named",
              "already_linked", "resumed", "skipped")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = Counter({f: 0 for f in self.FIELDS})

    def bump(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._counts[name] += n

    def __getitem__(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def as_dict(self) -> dict:
        with self._lock:
            return dict(self._counts)

    def summary(self) -> str:
        return ", ".join(f"{k}={v}" for k, v in self.as_dict().items())


class _Abort:
    """First-error-wins latch shared by the stages of one run."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self._lock = threading.Lock()
        self.error: Optional[BaseException] = None

    def fail(self, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc
        self.event.set()

    def is_set(self) -> bool:
        return self.event.is_set()


# ---------- traversal ----------

class Traversal:
    """Walks the input tree and yields one WorkItem (no key yet) per accepted file."""

    def __init__(self, settings: LinkSettings, resolver: Optional[TimestampResolver] = None) -> None:
        self.settings = settings
        self.resolver = resolver or TimestampResolver(settings)

    def _onerror(self, err: OSError) -> None:
        raise TraversalError(f"while traversing files: {err}") from err

    def candidates(self, root: Path) -> Iterator[Path]:
        """Regular, non-symlink files with an accepted extension, outside ignored paths."""
        root = Path(root)
        if not root.is_dir():
            raise TraversalError(f"input directory not found: {root}")
        ignore = self.settings.ignore
        for dirpath, dirs, files in os.walk(root, onerror=self._onerror):
            # nothing under an ignored directory can be accepted
            dirs[:] = sorted(d for d in dirs if not any(s in os.path.join(dirpath, d) for s in ignore))
            for name in sorted(files):
                p = os.path.join(dirpath, name)
                if not self.settings.accepts(p):
                    continue
                if os.path.islink(p) or not os.path.isfile(p):
                    continue
                yield Path(p)

    def walk(self, root: Path) -> Iterator[WorkItem]:
        for p in self.candidates(root):
            ts, source = self.resolver.resolve(p)
            yield WorkItem(source_path=str(p), timestamp=ts, timestamp_source=source)


# ---------- digest ----------

class DigestStage:
    """Fills in content keys, consulting the path cache before reading any bytes."""

    def __init__(self, store: StateStore, stats: RunStats, digest: Digest = sha256_file) -> None:
        self.store = store
        self.stats = stats
        self.digest = digest

    def process(self, item: WorkItem) -> WorkItem:
        key = self.store.lookup_cached_key(item.source_path)
        if key is not None:
            self.stats.bump("cache_hits")
            return item.with_key(key)
        key = self.digest(item.source_path)
        self.store.record_cached_key(item.source_path, key)
        self.stats.bump("hashed")
        return item.with_key(key)


# ---------- commit ----------

def _same_inode(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


class CommitStage:
    """
    Claims a content key and links the file into <output>/<YYYY>/<MM>/.
    Outcomes: linked (plain or fallback name), already linked, or skipped
    because the content was claimed before.
    """

    def __init__(self, store: StateStore, output_root: Path, run_id: str,
                 stats: RunStats, log: Optional[RunLogger] = None) -> None:
        self.store = store
        self.output_root = Path(output_root)
        self.run_id = run_id
        self.stats = stats
        self.log = log or run_logger(run_id)

    def _claim(self, item: WorkItem) -> Optional[bool]:
        """True for a fresh claim, False for a reclaimed interrupted one, None if handled elsewhere."""
        key = item.content_key
        if self.store.compare_and_transition(
            key, PlacementState.ABSENT, PlacementState.DISCOVERED,
            source_path=item.source_path, run_id=self.run_id,
        ):
            return True
        if self.store.reclaim(key, self.run_id, source_path=item.source_path):
            return False
        return None

    def _link(self, key: bytes, src: Path, target: Path) -> None:
        self.store.record_target(key, target)
        os.link(src, target)

    def _place(self, item: WorkItem, src: Path, directory: Path) -> Path:
        key = item.content_key
        target = directory / src.name
        try:
            self._link(key, src, target)
            self.stats.bump("linked")
            return target
        except FileExistsError:
            if _same_inode(target, src):
                self.stats.bump("already_linked")
                return target
        except OSError as e:
            raise CommitError(f"while linking {src} to {target}: {e}") from e

        # an unrelated file owns the plain name
        target = directory / fallback_name(key, src.name)
        try:
            self._link(key, src, target)
        except FileExistsError as e:
            if _same_inode(target, src):
                self.stats.bump("already_linked")
                return target
            raise CommitError(f"while linking {src} to {target}: {e}") from e
        except OSError as e:
            raise CommitError(f"while linking {src} to {target}: {e}") from e
        self.stats.bump("linked")
        self.stats.bump("fallback_named")
        return target

    def commit(self, item: WorkItem) -> Optional[Path]:
        """Returns where the content now lives, or None when skipped."""
        if item.content_key is None:
            raise CommitError(f"no content key for {item.source_path}")
        key = item.content_key
        extra = {"file_token": item.file_token}
        src = Path(item.source_path)

        claim = self._claim(item)
        if claim is None:
            self.stats.bump("skipped")
            self.log.info("skipping handled file %s", item.source_path, extra=extra)
            return None

        target: Optional[Path] = None
        if claim is False:
            self.stats.bump("resumed")
            placement = self.store.get_placement(key) or {}
            recorded = placement.get("target_path")
            self.log.info("resuming interrupted placement of %s (recorded target %s)",
                          item.source_path, recorded or "-", extra=extra)
            if recorded and same_content(Path(recorded), src, key):
                target = Path(recorded)
                self.stats.bump("already_linked")

        if target is None:
            directory = self.output_root / time_path(item.timestamp)
            try:
                ensure_dir(directory)
            except OSError as e:
                raise CommitError(f"while creating directory {directory}: {e}") from e
            target = self._place(item, src, directory)

        if not self.store.compare_and_transition(key, PlacementState.DISCOVERED, PlacementState.COPIED):
            raise CommitError(f"while committing file {item.source_path}: state is no longer Discovered")

        self.log.debug("linked %s -> %s", item.source_path, target, extra=extra)
        self.log.info("finished: %s", item.source_path, extra=extra)
        return target


# ---------- wiring ----------

def _stage_worker(name: str, inbox: queue.Queue, outbox: Optional[queue.Queue],
                  fn: Callable[[WorkItem], object], abort: _Abort) -> None:
    """Pull until _END; after an abort, keep draining without doing work."""
    while True:
        item = inbox.get()
        if item is _END:
            return
        if abort.is_set():
            continue
        try:
            result = fn(item)
        except BaseException as e:
            LOGGER.debug("%s failed on %s", name, getattr(item, "source_path", item))
            abort.fail(e)
            continue
        if outbox is not None:
            outbox.put(result)


def _traverse(traversal: Traversal, root: Path, outbox: queue.Queue,
              stats: RunStats, abort: _Abort) -> None:
    try:
        for item in traversal.walk(root):
            if abort.is_set():
                return
            stats.bump("scanned")
            outbox.put(item)
    except BaseException as e:
        abort.fail(e)


def _start(threads: List[threading.Thread], target, name: str, *args) -> None:
    t = threading.Thread(target=target, name=name, args=args, daemon=True)
    t.start()
    threads.append(t)


def run_pipeline(
    input_root: Path,
    output_root: Path,
    store: StateStore,
    settings: LinkSettings,
    *,
    resolver: Optional[TimestampResolver] = None,
    digest: Digest = sha256_file,
) -> RunStats:
    """
    One full link pass. Records a runs row, runs all stages to completion and
    returns the counters. Raises the first error any stage hit.
    """
    input_root, output_root = Path(input_root), Path(output_root)
    run_id = store.begin_run(str(input_root), str(output_root))
    log = run_logger(run_id)
    log.info("Started link pass %s: %s -> %s", run_id, input_root, output_root)

    stats = RunStats()
    abort = _Abort()
    traversal = Traversal(settings, resolver)
    digester = DigestStage(store, stats, digest)
    committer = CommitStage(store, output_root, run_id, stats, log)

    found: queue.Queue = queue.Queue()
    hashed: queue.Queue = queue.Queue()

    walker: List[threading.Thread] = []
    hash_workers: List[threading.Thread] = []
    commit_workers: List[threading.Thread] = []

    _start(walker, _traverse, "traversal", traversal, input_root, found, stats, abort)
    for idx in range(settings.hash_workers):
        _start(hash_workers, _stage_worker, f"hash-worker-{idx+1}",
               "digest", found, hashed, digester.process, abort)
    for idx in range(settings.commit_workers):
        _start(commit_workers, _stage_worker, f"commit-worker-{idx+1}",
               "commit", hashed, None, committer.commit, abort)

    walker[0].join()
    for _ in hash_workers:
        found.put(_END)
    for t in hash_workers:
        t.join()
    for _ in commit_workers:
        hashed.put(_END)
    for t in commit_workers:
        t.join()

    if abort.error is not None:
        log.error("Link pass %s aborted: %s", run_id, abort.error)
        try:
            store.finish_run(run_id, status="failed")
        finally:
            raise abort.error

    store.finish_run(run_id, status="ok")
    log.info("Summary: %s", stats.summary())
    return stats
