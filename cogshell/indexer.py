"""Embedding index over text files in the workspace.

Files are split into overlapping character chunks; each chunk is embedded and
stored in SQLite next to the file's mtime/size so an incremental pass only
re-reads files that changed.
"""

from __future__ import annotations

import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel

from .embeddings import EmbeddingModel, cosine_rank, to_blob
from .logging_utils import log
from .util import utc_ts

TEXT_SUFFIXES = frozenset(
    """
    .py .pyi .md .rst .txt .toml .cfg .ini .yaml .yml .json .sh .js .ts .tsx .jsx .html .css
    .c .h .cc .cpp .hpp .cs .go .rs .java .kt .rb .sql
    """.split()
)
SKIP_DIRS = frozenset({".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", "venv", "build", "dist", ".tox"})
MAX_FILE_BYTES = 512_000


class ReindexResult(BaseModel):
    total_files: int = 0
    processed_files: int = 0
    indexed_chunks: int = 0
    skipped_files: int = 0
    error_files: int = 0
    elapsed_s: float = 0.0


class IndexHit(BaseModel):
    path: str
    chunk_index: int
    content: str
    score: float


class IndexStats(BaseModel):
    indexed_files: int
    total_vectors: int
    vector_size: int
    last_run: Optional[float] = None


def chunk_text(text: str, size: int = 1200, overlap: int = 200) -> List[str]:
    text = text.strip()
    if not text:
        return []
    if len(text) <= size:
        return [text]
    step = max(1, size - overlap)
    return [text[i : i + size] for i in range(0, len(text), step) if text[i : i + size].strip()]


class WorkspaceIndex:
    def __init__(
        self,
        db_path: str,
        embedder: EmbeddingModel,
        roots: Sequence[str] = (".",),
        *,
        chunk_size: int = 1200,
        chunk_overlap: int = 200,
    ):
        self.db_path = db_path
        self.embedder = embedder
        self.roots = [str(Path(r).expanduser()) for r in roots] or ["."]
        self.chunk_size = int(chunk_size)
        self.chunk_overlap = int(chunk_overlap)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=5.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=5000;")
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            c = self._conn.cursor()
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS index_files(
                    path TEXT PRIMARY KEY,
                    mtime REAL NOT NULL,
                    size INTEGER NOT NULL,
                    chunks INTEGER NOT NULL
                );
            """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS index_chunks(
                    path TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    emb BLOB NOT NULL,
                    emb_dim INTEGER NOT NULL,
                    PRIMARY KEY (path, chunk_index)
                );
            """
            )
            c.execute("CREATE TABLE IF NOT EXISTS index_runs(ts REAL NOT NULL, kind TEXT NOT NULL, files INTEGER NOT NULL);")
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _walk(self) -> Iterator[Path]:
        for root in self.roots:
            base = Path(root)
            if base.is_file():
                yield base.resolve()
                continue
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS and not d.startswith(".")]
                for fn in filenames:
                    p = Path(dirpath) / fn
                    if p.suffix.lower() in TEXT_SUFFIXES:
                        yield p.resolve()

    def _known(self) -> dict:
        with self._lock:
            rows = self._conn.execute("SELECT path, mtime, size FROM index_files").fetchall()
        return {r["path"]: (float(r["mtime"]), int(r["size"])) for r in rows}

    def _index_file(self, path: Path, st: os.stat_result) -> int:
        text = path.read_text(encoding="utf-8", errors="replace")
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        rows: List[Tuple[str, int, str, bytes, int]] = []
        for i, ch in enumerate(chunks):
            blob, dim = to_blob(self.embedder.embed(ch))
            rows.append((str(path), i, ch, blob, dim))
        with self._lock:
            self._conn.execute("DELETE FROM index_chunks WHERE path=?", (str(path),))
            self._conn.executemany(
                "INSERT INTO index_chunks(path, chunk_index, content, emb, emb_dim) VALUES (?, ?, ?, ?, ?)", rows
            )
            self._conn.execute(
                "INSERT INTO index_files(path, mtime, size, chunks) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(path) DO UPDATE SET mtime=excluded.mtime, size=excluded.size, chunks=excluded.chunks",
                (str(path), float(st.st_mtime), int(st.st_size), len(rows)),
            )
            self._conn.commit()
        return len(rows)

    def reindex(self, full: bool = True) -> ReindexResult:
        """Full: clear and rebuild. Incremental: only files whose mtime or size changed."""
        t0 = time.monotonic()
        res = ReindexResult()
        if full:
            with self._lock:
                self._conn.execute("DELETE FROM index_chunks")
                self._conn.execute("DELETE FROM index_files")
                self._conn.commit()
        known = {} if full else self._known()
        for path in self._walk():
            try:
                st = path.stat()
            except OSError:
                res.error_files += 1
                continue
            if st.st_size > MAX_FILE_BYTES:
                res.skipped_files += 1
                continue
            prev = known.get(str(path))
            if prev is not None and prev == (float(st.st_mtime), int(st.st_size)):
                continue
            res.total_files += 1
            try:
                res.indexed_chunks += self._index_file(path, st)
                res.processed_files += 1
            except (OSError, UnicodeError) as e:
                res.error_files += 1
                log.warning("index file failed", extra={"extra": {"path": str(path), "err": str(e)}})
        with self._lock:
            self._conn.execute(
                "INSERT INTO index_runs(ts, kind, files) VALUES (?, ?, ?)",
                (utc_ts(), "full" if full else "incremental", res.processed_files),
            )
            self._conn.commit()
        res.elapsed_s = time.monotonic() - t0
        log.info("reindex finished", extra={"extra": {"full": full, **res.model_dump()}})
        return res

    def search(self, query: str, limit: int = 5, threshold: float = 0.3) -> List[IndexHit]:
        q = self.embedder.embed(query)
        dim = int(q.shape[0])
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, chunk_index, content, emb FROM index_chunks WHERE emb_dim=?", (dim,)
            ).fetchall()
        if not rows:
            return []
        mat = np.empty((len(rows), dim), dtype=np.float32)
        for i, r in enumerate(rows):
            mat[i, :] = np.frombuffer(r["emb"], dtype=np.float32, count=dim)
        scores = cosine_rank(q, mat)
        out: List[IndexHit] = []
        for i in np.argsort(-scores)[: int(limit)]:
            s = float(scores[i])
            if s < float(threshold):
                break
            r = rows[int(i)]
            out.append(IndexHit(path=r["path"], chunk_index=int(r["chunk_index"]), content=r["content"], score=s))
        return out

    def stats(self) -> IndexStats:
        with self._lock:
            files = self._conn.execute("SELECT COUNT(1) AS n FROM index_files").fetchone()
            vecs = self._conn.execute("SELECT COUNT(1) AS n FROM index_chunks").fetchone()
            last = self._conn.execute("SELECT MAX(ts) AS ts FROM index_runs").fetchone()
        return IndexStats(
            indexed_files=int(files["n"]),
            total_vectors=int(vecs["n"]),
            vector_size=int(getattr(self.embedder, "dim", 0)),
            last_run=last["ts"] if last else None,
        )
