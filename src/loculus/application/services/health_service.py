from __future__ import annotations

from dataclasses import dataclass

from loculus.infrastructure.db.sqlite import read_connection
from loculus.infrastructure.vector.store import VectorStore


@dataclass(slots=True)
class DoctorIssue:
    check: str
    level: str
    message: str


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks_run: int
    issues: list[DoctorIssue]
    db_runtime: dict[str, object]


class HealthService:
    def __init__(self, store: VectorStore) -> None:
        self.store = store

    def run_doctor(self) -> DoctorReport:
        issues: list[DoctorIssue] = []
        checks_run = 0
        db_path = self.store.db_path

        # Check 1: database runtime pragmas support concurrent access.
        checks_run += 1
        with read_connection(db_path) as conn:
            journal_mode = str(conn.execute("PRAGMA journal_mode;").fetchone()[0]).lower()
            busy_timeout_ms = int(conn.execute("PRAGMA busy_timeout;").fetchone()[0])
            foreign_keys = int(conn.execute("PRAGMA foreign_keys;").fetchone()[0])

        db_runtime: dict[str, object] = {
            "journal_mode": journal_mode,
            "busy_timeout_ms": busy_timeout_ms,
            "foreign_keys": bool(foreign_keys),
        }

        if journal_mode != "wal":
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message=f"SQLite journal_mode is '{journal_mode}', expected 'wal' for concurrent access.",
                )
            )
        if foreign_keys != 1:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message="SQLite foreign_keys pragma is disabled; deletes will not cascade.",
                )
            )
        if busy_timeout_ms < 1_000:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="warning",
                    message=f"SQLite busy_timeout is low ({busy_timeout_ms}ms); consider >= 1000ms.",
                )
            )

        # Check 2: recorded vector dimension matches configuration.
        checks_run += 1
        recorded = self.store.recorded_dimension()
        db_runtime["vector_dimension"] = recorded
        if recorded is None:
            issues.append(
                DoctorIssue(
                    check="vector_dimension",
                    level="warning",
                    message="No vector dimension recorded; run 'loculus init'.",
                )
            )
        elif recorded != self.store.dimension:
            issues.append(
                DoctorIssue(
                    check="vector_dimension",
                    level="error",
                    message=f"Store holds {recorded}-dimensional vectors but {self.store.dimension} is configured.",
                )
            )

        # Check 3: no document is left mid-indexing.
        checks_run += 1
        with read_connection(db_path) as conn:
            rows = conn.execute("SELECT id, title FROM documents WHERE status = 'indexing'").fetchall()
        for row in rows:
            issues.append(
                DoctorIssue(
                    check="stale_indexing",
                    level="warning",
                    message=f"Document {row['id']} ({row['title']}) is stuck in 'indexing'.",
                )
            )

        # Check 4: indexed documents own exactly chunk_count vectors.
        checks_run += 1
        with read_connection(db_path) as conn:
            rows = conn.execute(
                """
                SELECT d.id, d.chunk_count, COUNT(v.id) AS vector_count
                FROM documents d
                LEFT JOIN vectors v ON v.document_id = d.id
                WHERE d.status = 'indexed'
                GROUP BY d.id
                HAVING COUNT(v.id) != d.chunk_count
                """
            ).fetchall()
        for row in rows:
            issues.append(
                DoctorIssue(
                    check="vector_counts",
                    level="error",
                    message=(
                        f"Document {row['id']} is indexed with chunk_count={row['chunk_count']} "
                        f"but has {row['vector_count']} vectors."
                    ),
                )
            )

        return DoctorReport(
            ok=not any(i.level == "error" for i in issues),
            checks_run=checks_run,
            issues=issues,
            db_runtime=db_runtime,
        )
