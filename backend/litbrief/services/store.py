"""Paper store for persisted papers and per-brief associations."""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Union

from litbrief.core.exceptions import RecordNotFoundError
from litbrief.core.logging import get_logger
from litbrief.schemas.papers import (
    BriefPaper,
    CandidatePaper,
    Paper,
    PaperBriefAssociation,
    utc_now,
)

logger = get_logger(__name__)

_PAPER_COLUMNS = (
    "id", "external_id", "title", "abstract", "authors", "year",
    "submitted_date", "updated_date", "abstract_url", "pdf_url", "doi",
    "bibtex", "primary_category", "categories", "comments", "journal_ref",
    "source", "last_enriched", "created_at", "updated_at",
)

_ASSOCIATION_COLUMNS = (
    "id", "brief_id", "paper_id", "search_queries", "is_selected",
    "relevancy_score", "relevancy_justification", "created_at", "updated_at",
)


@dataclass
class SaveResult:
    """Outcome of saving one candidate for one brief."""

    paper: Paper
    association: PaperBriefAssociation
    paper_created: bool
    association_created: bool


class PaperStore:
    """Repository for papers and paper/brief associations using SQLite.

    Every write path is insert-if-absent or update-by-key, so repeating
    a write is harmless.
    """

    def __init__(self, db_path: Union[str, Path], timeout: float = 5.0):
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One write transaction; the write lock is taken up front."""
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _init_db(self) -> None:
        """Initialize database schema."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS papers (
                    id TEXT PRIMARY KEY,
                    external_id TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    abstract TEXT NOT NULL DEFAULT '',
                    authors TEXT NOT NULL DEFAULT '[]',
                    year INTEGER,
                    submitted_date TEXT,
                    updated_date TEXT,
                    abstract_url TEXT NOT NULL DEFAULT '',
                    pdf_url TEXT NOT NULL DEFAULT '',
                    doi TEXT,
                    bibtex TEXT,
                    primary_category TEXT,
                    categories TEXT NOT NULL DEFAULT '[]',
                    comments TEXT,
                    journal_ref TEXT,
                    source TEXT NOT NULL,
                    last_enriched TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS paper_brief_associations (
                    id TEXT PRIMARY KEY,
                    brief_id TEXT NOT NULL,
                    paper_id TEXT NOT NULL REFERENCES papers(id),
                    search_queries TEXT NOT NULL DEFAULT '[]',
                    is_selected INTEGER NOT NULL DEFAULT 0,
                    relevancy_score REAL,
                    relevancy_justification TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(brief_id, paper_id)
                );

                CREATE INDEX IF NOT EXISTS idx_assoc_brief ON paper_brief_associations(brief_id);
            """)

    # === Papers ===

    def save_candidate(self, brief_id: str, candidate: CandidatePaper) -> SaveResult:
        """Store a candidate and its association for a brief in one transaction.

        An existing paper is never overwritten. An existing association only
        gains any originating query texts it did not already list.

        Args:
            brief_id: Brief the candidate was found for
            candidate: Candidate paper from a search run

        Returns:
            SaveResult with the stored rows and whether each was created
        """
        new_paper = Paper.from_candidate(candidate)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO papers ({', '.join(_PAPER_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _PAPER_COLUMNS)})",
                self._paper_to_row(new_paper),
            )
            paper_created = cursor.rowcount > 0
            row = conn.execute(
                "SELECT * FROM papers WHERE external_id = ?", (candidate.external_id,)
            ).fetchone()
            paper = self._row_to_paper(row)

            new_association = PaperBriefAssociation(
                brief_id=brief_id,
                paper_id=paper.id,
                search_queries=list(candidate.search_queries),
                relevancy_score=candidate.relevancy_score,
            )
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO paper_brief_associations ({', '.join(_ASSOCIATION_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _ASSOCIATION_COLUMNS)})",
                self._association_to_row(new_association),
            )
            association_created = cursor.rowcount > 0
            association = self._fetch_association(conn, brief_id, paper.id)

            if not association_created:
                merged = association.search_queries + [
                    q for q in candidate.search_queries if q not in association.search_queries
                ]
                if merged != association.search_queries:
                    now = utc_now()
                    conn.execute(
                        "UPDATE paper_brief_associations SET search_queries = ?, updated_at = ? "
                        "WHERE id = ?",
                        (json.dumps(merged), now.isoformat(), association.id),
                    )
                    association = association.model_copy(
                        update={"search_queries": merged, "updated_at": now}
                    )

        return SaveResult(
            paper=paper,
            association=association,
            paper_created=paper_created,
            association_created=association_created,
        )

    def get_paper(self, paper_id: str) -> Optional[Paper]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM papers WHERE id = ?", (paper_id,)).fetchone()
        return self._row_to_paper(row) if row else None

    def get_paper_by_external_id(self, external_id: str) -> Optional[Paper]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM papers WHERE external_id = ?", (external_id,)
            ).fetchone()
        return self._row_to_paper(row) if row else None

    def get_papers(self, paper_ids: List[str]) -> List[Paper]:
        """Papers for the given ids, in the order the ids were given."""
        if not paper_ids:
            return []
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM papers WHERE id IN ({', '.join('?' for _ in paper_ids)})",
                list(paper_ids),
            ).fetchall()
        by_id = {row["id"]: self._row_to_paper(row) for row in rows}
        return [by_id[pid] for pid in paper_ids if pid in by_id]

    def count_papers(self, external_id: Optional[str] = None) -> int:
        with self._connection() as conn:
            if external_id is None:
                row = conn.execute("SELECT COUNT(*) FROM papers").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM papers WHERE external_id = ?", (external_id,)
                ).fetchone()
        return row[0]

    # === Associations ===

    def get_association(self, brief_id: str, paper_id: str) -> Optional[PaperBriefAssociation]:
        with self._connection() as conn:
            try:
                return self._fetch_association(conn, brief_id, paper_id)
            except RecordNotFoundError:
                return None

    def count_associations(self, brief_id: Optional[str] = None, paper_id: Optional[str] = None) -> int:
        clauses, params = [], []
        if brief_id is not None:
            clauses.append("brief_id = ?")
            params.append(brief_id)
        if paper_id is not None:
            clauses.append("paper_id = ?")
            params.append(paper_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM paper_brief_associations{where}", params
            ).fetchone()
        return row[0]

    def update_relevancy(
        self,
        brief_id: str,
        paper_id: str,
        score: float,
        justification: Optional[str] = None,
    ) -> bool:
        """Set the relevancy score of an existing association.

        Returns:
            True if an association was updated, False if none exists
        """
        if not 0 <= score <= 100:
            raise ValueError(f"Relevancy score must be within [0, 100], got {score}")

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE paper_brief_associations
                SET relevancy_score = ?, relevancy_justification = ?, updated_at = ?
                WHERE brief_id = ? AND paper_id = ?
                """,
                (score, justification, utc_now().isoformat(), brief_id, paper_id),
            )
            return cursor.rowcount > 0

    def set_selected(self, brief_id: str, paper_id: str, is_selected: bool) -> PaperBriefAssociation:
        """Persist the user's selection choice for one paper."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE paper_brief_associations
                SET is_selected = ?, updated_at = ?
                WHERE brief_id = ? AND paper_id = ?
                """,
                (int(is_selected), utc_now().isoformat(), brief_id, paper_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("paper_brief_associations", f"{brief_id}/{paper_id}")
            return self._fetch_association(conn, brief_id, paper_id)

    def toggle_selected(self, brief_id: str, paper_id: str) -> PaperBriefAssociation:
        """Flip the selection flag of one paper for a brief."""
        with self._transaction() as conn:
            association = self._fetch_association(conn, brief_id, paper_id)
            conn.execute(
                "UPDATE paper_brief_associations SET is_selected = ?, updated_at = ? WHERE id = ?",
                (int(not association.is_selected), utc_now().isoformat(), association.id),
            )
            return self._fetch_association(conn, brief_id, paper_id)

    def list_brief_papers(self, brief_id: str) -> List[BriefPaper]:
        """All papers associated with a brief, joined with their association."""
        paper_cols = ", ".join(f"p.{c} AS p_{c}" for c in _PAPER_COLUMNS)
        assoc_cols = ", ".join(f"a.{c} AS a_{c}" for c in _ASSOCIATION_COLUMNS)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {paper_cols}, {assoc_cols}
                FROM paper_brief_associations a
                JOIN papers p ON p.id = a.paper_id
                WHERE a.brief_id = ?
                ORDER BY a.created_at, p.external_id
                """,
                (brief_id,),
            ).fetchall()

        results = []
        for row in rows:
            paper = self._row_to_paper({c: row[f"p_{c}"] for c in _PAPER_COLUMNS})
            association = self._row_to_association({c: row[f"a_{c}"] for c in _ASSOCIATION_COLUMNS})
            results.append(BriefPaper(paper=paper, association=association))
        return results

    # === Row mapping ===

    def _fetch_association(self, conn: sqlite3.Connection, brief_id: str, paper_id: str) -> PaperBriefAssociation:
        row = conn.execute(
            "SELECT * FROM paper_brief_associations WHERE brief_id = ? AND paper_id = ?",
            (brief_id, paper_id),
        ).fetchone()
        if row is None:
            raise RecordNotFoundError("paper_brief_associations", f"{brief_id}/{paper_id}")
        return self._row_to_association(row)

    @staticmethod
    def _paper_to_row(paper: Paper) -> tuple:
        return (
            paper.id,
            paper.external_id,
            paper.title,
            paper.abstract,
            json.dumps(paper.authors),
            paper.year,
            paper.submitted_date,
            paper.updated_date,
            paper.abstract_url,
            paper.pdf_url,
            paper.doi,
            paper.bibtex,
            paper.primary_category,
            json.dumps(paper.categories),
            paper.comments,
            paper.journal_ref,
            paper.source,
            paper.last_enriched.isoformat(),
            paper.created_at.isoformat(),
            paper.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_paper(row) -> Paper:
        return Paper(
            id=row["id"],
            external_id=row["external_id"],
            title=row["title"],
            abstract=row["abstract"],
            authors=json.loads(row["authors"]),
            year=row["year"],
            submitted_date=row["submitted_date"],
            updated_date=row["updated_date"],
            abstract_url=row["abstract_url"],
            pdf_url=row["pdf_url"],
            doi=row["doi"],
            bibtex=row["bibtex"],
            primary_category=row["primary_category"],
            categories=json.loads(row["categories"]),
            comments=row["comments"],
            journal_ref=row["journal_ref"],
            source=row["source"],
            last_enriched=datetime.fromisoformat(row["last_enriched"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _association_to_row(association: PaperBriefAssociation) -> tuple:
        return (
            association.id,
            association.brief_id,
            association.paper_id,
            json.dumps(association.search_queries),
            int(association.is_selected),
            association.relevancy_score,
            association.relevancy_justification,
            association.created_at.isoformat(),
            association.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_association(row) -> PaperBriefAssociation:
        return PaperBriefAssociation(
            id=row["id"],
            brief_id=row["brief_id"],
            paper_id=row["paper_id"],
            search_queries=json.loads(row["search_queries"]),
            is_selected=bool(row["is_selected"]),
            relevancy_score=row["relevancy_score"],
            relevancy_justification=row["relevancy_justification"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
