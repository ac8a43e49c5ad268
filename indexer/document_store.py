"""SQLite document store for the standards catalog.

Documents live in a primary table; an FTS5 external-content table mirrors their
searchable fields through triggers. The FTS5 table is derived data: whenever a
query fails in a way that points at a damaged lexical index, the store drops it,
rebuilds it from the primary table and retries the query once.
"""

import logging
import re
import sqlite3
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from services.shared.models import Category, Document, SearchResult
from observability.prometheus_metrics import record_db_metrics, record_index_rebuild
from .outcome import FailureReason, Outcome
from .serialization import (
    document_to_row,
    row_to_document,
    to_db_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
FTS_TABLE = "documents_fts"

# Score given to every row of an unranked (blank query) listing
SENTINEL_SCORE = 1.0

SCRAPE_STATUSES = ("success", "failed", "skipped")

# Error messages that point at the lexical index rather than the primary table
CORRUPTION_SIGNATURES = (
    "database disk image is malformed",
    "fts5: syntax error",
    "fts5: corrupt",
    "vtable constructor failed",
    f"no such table: {FTS_TABLE}",
    f"no such table: main.{FTS_TABLE}",
)

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)

Statement = Tuple[str, Sequence[Any]]


class DocumentStoreError(Exception):
    """A store operation failed and could not be recovered."""


class StoreIntegrityError(DocumentStoreError):
    """The primary store is structurally damaged; it must not serve traffic."""


def is_index_corruption(error: BaseException) -> bool:
    message = str(error).lower()
    return any(signature in message for signature in CORRUPTION_SIGNATURES)


def tokenize_query(query: str) -> List[str]:
    return TOKEN_PATTERN.findall(query.lower())


def build_match_expression(tokens: Iterable[str]) -> str:
    """Quote every token so user input can never be parsed as FTS5 syntax."""
    return " ".join('"' + token.replace('"', '""') + '"' for token in tokens)


def matched_fields(document: Document, tokens: List[str]) -> List[str]:
    fields = []
    candidates = (
        ("title", document.title),
        ("content", document.content),
        ("summary", document.summary or ""),
        ("tags", " ".join(document.tags)),
    )
    for name, text in candidates:
        lowered = text.lower()
        if any(token in lowered for token in tokens):
            fields.append(name)
    return fields


class DocumentStore:
    """Durable document storage with a self-healing lexical index."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 30000):
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open the database, verify it and make sure the schema exists.

        Raises:
            StoreIntegrityError: if the primary store fails its health check.
            DocumentStoreError: if the database cannot be opened at all.
        """
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_ms / 1000,
                check_same_thread=False,
            )
            self.conn.row_factory = sqlite3.Row
            self._configure_connection()
            index_damaged = self._check_health()
        except StoreIntegrityError:
            self._discard_connection()
            raise
        except sqlite3.OperationalError as e:
            self._discard_connection()
            raise DocumentStoreError(f"Cannot open document store {self.db_path}: {e}") from e
        except sqlite3.DatabaseError as e:
            self._discard_connection()
            raise StoreIntegrityError(f"Document store failed health check: {e}") from e

        self.conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        self.conn.commit()

        if index_damaged or not self._lexical_index_healthy():
            await self.rebuild_lexical_index(reason="startup_verification")

        logger.info(f"Document store initialized: {self.db_path}")

    def _configure_connection(self):
        mode = self.conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
        if mode.lower() != "wal":
            logger.debug(f"WAL journal not available for {self.db_path}, using {mode}")
        self.conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self.conn.execute("PRAGMA foreign_keys = ON")

    def _check_health(self) -> bool:
        """Verify connectivity and structure.

        Returns True when only the lexical index reported problems.
        """
        self.conn.execute("SELECT 1").fetchone()
        problems = [
            row[0] for row in self.conn.execute("PRAGMA integrity_check").fetchall()
            if row[0] != "ok"
        ]
        primary_problems = [p for p in problems if FTS_TABLE not in p]
        if primary_problems:
            raise StoreIntegrityError(
                f"Database integrity check failed: {'; '.join(primary_problems)}"
            )
        if problems:
            logger.warning(f"Lexical index failed integrity check: {'; '.join(problems)}")
        logger.debug("Database health check passed")
        return bool(problems)

    def _lexical_index_healthy(self) -> bool:
        try:
            self.conn.execute(
                f"INSERT INTO {FTS_TABLE}({FTS_TABLE}, rank) VALUES ('integrity-check', 1)"
            )
            self.conn.commit()
            return True
        except sqlite3.DatabaseError as e:
            self.conn.rollback()
            logger.warning(f"Lexical index verification failed, rebuilding: {e}")
            return False

    def _discard_connection(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    async def close(self):
        """Close the SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Document store connection closed")

    def _require_connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise DocumentStoreError("Document store not initialized. Call initialize() first.")
        return self.conn

    def _attempt(self, statements: List[Statement], write: bool) -> Outcome:
        """Run statements as one unit; the rows of the last one are the value."""
        conn = self._require_connection()
        try:
            rows: List[sqlite3.Row] = []
            for sql, params in statements:
                rows = conn.execute(sql, params).fetchall()
            if write:
                conn.commit()
            return Outcome.success(rows)
        except sqlite3.DatabaseError as e:
            if conn.in_transaction:
                conn.rollback()
            reason = FailureReason.INDEX_CORRUPTION if is_index_corruption(e) else FailureReason.QUERY_ERROR
            return Outcome.failed(reason, error=e)

    async def _run(self, statements: List[Statement], query_type: str,
                   write: bool = False) -> List[sqlite3.Row]:
        start = time.time()
        outcome = self._attempt(statements, write)

        if outcome.failure is FailureReason.INDEX_CORRUPTION:
            logger.error(f"Lexical index corruption detected during {query_type}, attempting recovery: {outcome.detail}")
            await self.rebuild_lexical_index(reason=query_type)
            outcome = self._attempt(statements, write)

        duration = time.time() - start
        if not outcome.ok:
            record_db_metrics(query_type, duration, error=outcome.failure.value)
            raise DocumentStoreError(f"{query_type} failed: {outcome.detail}") from outcome.error

        record_db_metrics(query_type, duration)
        return outcome.value

    async def _query(self, sql: str, params: Sequence[Any] = (),
                     query_type: str = "read") -> List[sqlite3.Row]:
        return await self._run([(sql, params)], query_type)

    async def rebuild_lexical_index(self, reason: str = "manual"):
        """Drop the FTS5 table, recreate it and repopulate it from documents."""
        conn = self._require_connection()
        logger.warning(f"Rebuilding lexical index ({reason})...")
        start = time.time()
        try:
            if conn.in_transaction:
                conn.rollback()
            conn.execute(f"DROP TABLE IF EXISTS {FTS_TABLE}")
            conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
            conn.execute(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')")
            conn.commit()
        except sqlite3.DatabaseError as e:
            logger.error(f"Failed to rebuild lexical index: {e}")
            record_index_rebuild(reason, time.time() - start, error=str(e))
            raise DocumentStoreError(f"Lexical index rebuild failed: {e}") from e

        record_index_rebuild(reason, time.time() - start)
        logger.info(f"Lexical index rebuilt in {time.time() - start:.3f}s")

    async def upsert(self, document: Document) -> Document:
        """Insert or fully replace a document by id.

        The lexical index is maintained by triggers inside the same transaction
        and the category count cache is refreshed for the old and new category.
        """
        row = document_to_row(document)
        now = to_db_timestamp(utc_now())
        row["created_at"] = now
        row["updated_at"] = now

        existing = await self._query(
            "SELECT category FROM documents WHERE id = ?", (document.id,), "read_category"
        )
        categories = {document.category}
        if existing:
            categories.add(existing[0]["category"])

        statements: List[Statement] = [(
            """
            INSERT INTO documents (
                id, title, category, url, content, summary, last_updated,
                source_org, tags, compliance_level, related_standards,
                created_at, updated_at
            ) VALUES (
                :id, :title, :category, :url, :content, :summary, :last_updated,
                :source_org, :tags, :compliance_level, :related_standards,
                :created_at, :updated_at
            )
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                category = excluded.category,
                url = excluded.url,
                content = excluded.content,
                summary = excluded.summary,
                last_updated = excluded.last_updated,
                source_org = excluded.source_org,
                tags = excluded.tags,
                compliance_level = excluded.compliance_level,
                related_standards = excluded.related_standards,
                updated_at = excluded.updated_at
            """,
            row,
        )]
        for category in sorted(categories):
            statements.append((
                """
                INSERT INTO categories (name, standards_count, refreshed_at)
                VALUES (?, (SELECT COUNT(*) FROM documents WHERE category = ?), ?)
                ON CONFLICT(name) DO UPDATE SET
                    standards_count = excluded.standards_count,
                    refreshed_at = excluded.refreshed_at
                """,
                (category, category, now),
            ))
        statements.append(("SELECT * FROM documents WHERE id = ?", (document.id,)))

        rows = await self._run(statements, "upsert", write=True)
        logger.debug(f"Inserted/updated document: {document.id}")
        return row_to_document(rows[0])

    async def get(self, document_id: str) -> Optional[Document]:
        rows = await self._query("SELECT * FROM documents WHERE id = ?", (document_id,), "get")
        return row_to_document(rows[0]) if rows else None

    async def all_documents(self) -> List[Document]:
        rows = await self._query("SELECT * FROM documents ORDER BY category, title", (), "list")
        return [row_to_document(row) for row in rows]

    async def lexical_search(self, query: str, category: Optional[str] = None,
                             organisation: Optional[str] = None) -> List[SearchResult]:
        """Keyword search over title, content, summary and tags.

        A blank query lists every document matching the filters, ordered by
        title, each with the sentinel score.
        """
        conditions: List[str] = []
        filter_params: List[Any] = []
        if category:
            conditions.append("d.category = ?")
            filter_params.append(category)
        if organisation:
            conditions.append("d.source_org = ?")
            filter_params.append(organisation)

        if not query or not query.strip():
            sql = "SELECT d.* FROM documents d"
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)
            sql += " ORDER BY d.title"
            rows = await self._query(sql, filter_params, "list_filtered")
            return [
                SearchResult(document=row_to_document(row), relevance_score=SENTINEL_SCORE, matched_fields=[])
                for row in rows
            ]

        tokens = tokenize_query(query)
        if not tokens:
            return []

        sql = f"""
            SELECT d.*, bm25({FTS_TABLE}) AS rank_score
            FROM {FTS_TABLE}
            JOIN documents d ON d.rowid = {FTS_TABLE}.rowid
            WHERE {FTS_TABLE} MATCH ?
        """
        if conditions:
            sql += " AND " + " AND ".join(conditions)
        sql += " ORDER BY rank_score"

        rows = await self._query(sql, [build_match_expression(tokens)] + filter_params, "lexical_search")
        results = []
        for row in rows:
            document = row_to_document(row)
            results.append(SearchResult(
                document=document,
                relevance_score=abs(row["rank_score"]),
                matched_fields=matched_fields(document, tokens),
            ))
        return results

    async def categories(self) -> List[Category]:
        rows = await self._query(
            """
            SELECT category AS name, COUNT(*) AS count
            FROM documents
            GROUP BY category
            ORDER BY count DESC, name ASC
            """,
            (),
            "categories",
        )
        return [Category(name=row["name"], count=row["count"]) for row in rows]

    async def recently_updated(self, days_back: int = 30) -> List[Document]:
        """Documents whose source or store timestamp falls inside the window."""
        cutoff = to_db_timestamp(utc_now() - timedelta(days=days_back))
        rows = await self._query(
            """
            SELECT * FROM documents
            WHERE last_updated >= ? OR updated_at >= ?
            ORDER BY COALESCE(last_updated, updated_at) DESC
            """,
            (cutoff, cutoff),
            "recent",
        )
        return [row_to_document(row) for row in rows]

    async def log_scraping(self, url: str, status: str, error_message: Optional[str] = None,
                           content_hash: Optional[str] = None, page_size: Optional[int] = None):
        if status not in SCRAPE_STATUSES:
            raise ValueError(f"Invalid scrape status: {status}")
        await self._run([(
            """
            INSERT INTO scraping_log (url, status, error_message, content_hash, page_size, scraped_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (url, status, error_message, content_hash, page_size, to_db_timestamp(utc_now())),
        )], "scrape_log", write=True)

    async def scraping_log(self, url: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        sql = "SELECT url, status, error_message, content_hash, page_size, scraped_at FROM scraping_log"
        params: List[Any] = []
        if url:
            sql += " WHERE url = ?"
            params.append(url)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = await self._query(sql, params, "scrape_log_read")
        return [dict(row) for row in rows]

    async def record_update_history(self, document_id: str,
                                    changes: Dict[str, Tuple[Optional[str], Optional[str]]]):
        """Append one history row per changed field."""
        if not changes:
            return
        now = to_db_timestamp(utc_now())
        statements: List[Statement] = [
            (
                """
                INSERT INTO update_history (document_id, field_name, old_value, new_value, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (document_id, field_name, old, new, now),
            )
            for field_name, (old, new) in changes.items()
        ]
        await self._run(statements, "update_history", write=True)

    async def update_history(self, document_id: str) -> List[Dict[str, Any]]:
        rows = await self._query(
            """
            SELECT field_name, old_value, new_value, updated_at
            FROM update_history WHERE document_id = ? ORDER BY id
            """,
            (document_id,),
            "update_history_read",
        )
        return [dict(row) for row in rows]

    async def index_entry_count(self) -> int:
        rows = await self._query(f"SELECT COUNT(*) FROM {FTS_TABLE}_docsize", (), "index_count")
        return rows[0][0]

    async def get_database_stats(self) -> Dict[str, Any]:
        """Counts for monitoring."""
        document_count = (await self._query("SELECT COUNT(*) FROM documents", (), "stats"))[0][0]
        category_count = (await self._query(
            "SELECT COUNT(DISTINCT category) FROM documents", (), "stats"
        ))[0][0]
        cutoff = to_db_timestamp(utc_now() - timedelta(days=1))
        recent_scrapes = (await self._query(
            "SELECT COUNT(*) FROM scraping_log WHERE scraped_at >= ?", (cutoff,), "stats"
        ))[0][0]
        return {
            'document_count': document_count,
            'category_count': category_count,
            'index_entry_count': await self.index_entry_count(),
            'recent_scrapes': recent_scrapes,
        }
