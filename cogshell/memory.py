from __future__ import annotations

import sqlite3
import threading
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field

from .embeddings import EmbeddingModel, cosine_rank, to_blob
from .logging_utils import log
from .util import jdump, jload, new_id, short, utc_ts


class Episode(BaseModel):
    id: str
    ts: float
    branch: str
    context: str
    outcome: str
    summary: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    similarity: float = 0.0


class MemoryStore:
    """
    SQLite-backed long-term memory for the shell:
    - episodes with embeddings (similarity recall)
    - learned skills
    - tool usage counters and tool/skill co-usage
    - proactive messages from the autonomous mind

    One connection shared across the turn and the background thread, guarded by a lock.
    """

    def __init__(self, db_path: str, embedder: EmbeddingModel):
        self.db_path = db_path
        self.embedder = embedder
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=5.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=5000;")
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ---- schema ----

    def _init_schema(self) -> None:
        with self._lock:
            c = self._conn.cursor()
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS episodes(
                    id TEXT PRIMARY KEY,
                    ts REAL NOT NULL,
                    branch TEXT NOT NULL,
                    context TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    metadata TEXT,
                    emb BLOB,
                    emb_dim INTEGER
                );
            """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS skills(
                    id TEXT PRIMARY KEY,
                    created REAL NOT NULL,
                    updated REAL NOT NULL,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT NOT NULL,
                    steps TEXT,
                    success_rate REAL NOT NULL,
                    uses INTEGER NOT NULL DEFAULT 0
                );
            """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS tool_usage(
                    tool TEXT PRIMARY KEY,
                    calls INTEGER NOT NULL,
                    successes INTEGER NOT NULL,
                    last_ts REAL NOT NULL
                );
            """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS tool_skill_links(
                    tool TEXT NOT NULL,
                    skill TEXT NOT NULL,
                    weight REAL NOT NULL,
                    PRIMARY KEY (tool, skill)
                );
            """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS proactive(
                    id TEXT PRIMARY KEY,
                    ts REAL NOT NULL,
                    score REAL NOT NULL,
                    message TEXT NOT NULL,
                    delivered INTEGER NOT NULL DEFAULT 0
                );
            """
            )
            self._conn.commit()

    # ---- episodes ----

    def store_episode(
        self,
        branch: str,
        context: str,
        outcome: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        md = dict(metadata or {})
        summary = str(md.get("summary") or short(f"{context} → {outcome}", 120))
        eid = new_id("ep")
        blob, dim = to_blob(self.embedder.embed(f"{context}\n{outcome}"))
        with self._lock:
            self._conn.execute(
                "INSERT INTO episodes(id, ts, branch, context, outcome, summary, metadata, emb, emb_dim) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (eid, utc_ts(), branch, context, outcome, summary, jdump(md), blob, dim),
            )
            self._conn.commit()
        return eid

    def retrieve_similar(self, text: str, top_k: int = 3, min_similarity: float = 0.65) -> List[Episode]:
        q = self.embedder.embed(text)
        q_dim = int(q.shape[0])
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, ts, branch, context, outcome, summary, metadata, emb FROM episodes "
                "WHERE emb IS NOT NULL AND emb_dim=?",
                (q_dim,),
            ).fetchall()
        if not rows or int(top_k) <= 0:
            return []
        mat = np.empty((len(rows), q_dim), dtype=np.float32)
        for i, r in enumerate(rows):
            mat[i, :] = np.frombuffer(r["emb"], dtype=np.float32, count=q_dim)
        scores = cosine_rank(q, mat)
        order = np.argsort(-scores)
        out: List[Episode] = []
        for i in order:
            s = float(scores[i])
            if s < float(min_similarity):
                break
            r = rows[int(i)]
            out.append(
                Episode(
                    id=r["id"],
                    ts=r["ts"],
                    branch=r["branch"],
                    context=r["context"],
                    outcome=r["outcome"],
                    summary=r["summary"],
                    metadata=jload(r["metadata"]) or {},
                    similarity=s,
                )
            )
            if len(out) >= int(top_k):
                break
        return out

    def episode_count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(1) AS n FROM episodes").fetchone()
        return int(row["n"]) if row else 0

    def recent_episodes(self, limit: int = 10) -> List[Episode]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, ts, branch, context, outcome, summary, metadata FROM episodes ORDER BY ts DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [
            Episode(
                id=r["id"],
                ts=r["ts"],
                branch=r["branch"],
                context=r["context"],
                outcome=r["outcome"],
                summary=r["summary"],
                metadata=jload(r["metadata"]) or {},
            )
            for r in rows
        ]

    # ---- skills ----

    def upsert_skill(
        self,
        name: str,
        description: str,
        *,
        steps: Optional[List[Dict[str, Any]]] = None,
        success_rate: float = 0.75,
    ) -> str:
        now = utc_ts()
        with self._lock:
            row = self._conn.execute("SELECT id FROM skills WHERE name=?", (name,)).fetchone()
            if row:
                sid = str(row["id"])
                self._conn.execute(
                    "UPDATE skills SET updated=?, description=?, steps=?, success_rate=? WHERE id=?",
                    (now, description, jdump(steps or []), float(success_rate), sid),
                )
            else:
                sid = new_id("skill")
                self._conn.execute(
                    "INSERT INTO skills(id, created, updated, name, description, steps, success_rate, uses) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, 0)",
                    (sid, now, now, name, description, jdump(steps or []), float(success_rate)),
                )
            self._conn.commit()
        return sid

    def list_skills(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name, description, steps, success_rate, uses FROM skills "
                "ORDER BY success_rate DESC, uses DESC, created ASC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "description": r["description"],
                "steps": jload(r["steps"]) or [],
                "success_rate": float(r["success_rate"]),
                "uses": int(r["uses"]),
            }
            for r in rows
        ]

    def record_skill_use(self, skill_id: str, ok: bool) -> None:
        with self._lock:
            row = self._conn.execute("SELECT success_rate, uses FROM skills WHERE id=?", (skill_id,)).fetchone()
            if not row:
                return
            uses = int(row["uses"]) + 1
            # Running mean of outcomes seeded by the prior rate.
            rate = (float(row["success_rate"]) * uses + (1.0 if ok else 0.0)) / (uses + 1)
            self._conn.execute(
                "UPDATE skills SET uses=?, success_rate=?, updated=? WHERE id=?",
                (uses, rate, utc_ts(), skill_id),
            )
            self._conn.commit()

    # ---- tool usage ----

    def record_tool_use(self, tool: str, ok: bool, *, skill: Optional[str] = None) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO tool_usage(tool, calls, successes, last_ts) VALUES (?, 1, ?, ?) "
                "ON CONFLICT(tool) DO UPDATE SET calls=calls+1, successes=successes+excluded.successes, "
                "last_ts=excluded.last_ts",
                (tool, 1 if ok else 0, utc_ts()),
            )
            if skill:
                self._conn.execute(
                    "INSERT INTO tool_skill_links(tool, skill, weight) VALUES (?, ?, 1.0) "
                    "ON CONFLICT(tool, skill) DO UPDATE SET weight=weight+1.0",
                    (tool, skill),
                )
            self._conn.commit()

    def tool_stats(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT tool, calls, successes, last_ts FROM tool_usage ORDER BY calls DESC, tool ASC"
            ).fetchall()
        return [
            {"tool": r["tool"], "calls": int(r["calls"]), "successes": int(r["successes"]), "last_ts": r["last_ts"]}
            for r in rows
        ]

    def connections(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT tool, skill, weight FROM tool_skill_links ORDER BY weight DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [{"tool": r["tool"], "skill": r["skill"], "weight": float(r["weight"])} for r in rows]

    # ---- proactive ----

    def add_proactive(self, message: str, *, score: float) -> str:
        pid = new_id("pro")
        with self._lock:
            self._conn.execute(
                "INSERT INTO proactive(id, ts, score, message, delivered) VALUES (?, ?, ?, ?, 0)",
                (pid, utc_ts(), float(score), message),
            )
            self._conn.commit()
        return pid

    def fetch_undelivered_proactive(self, limit: int = 3) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, ts, score, message FROM proactive WHERE delivered=0 ORDER BY score DESC, ts ASC LIMIT ?",
                (int(limit),),
            ).fetchall()
            ids = [r["id"] for r in rows]
            if ids:
                q = ",".join(["?"] * len(ids))
                self._conn.execute(f"UPDATE proactive SET delivered=1 WHERE id IN ({q})", ids)
                self._conn.commit()
        if ids:
            log.debug("proactive delivered", extra={"extra": {"count": len(ids)}})
        return [{"id": r["id"], "ts": r["ts"], "score": float(r["score"]), "message": r["message"]} for r in rows]
