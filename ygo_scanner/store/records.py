"""SQLite record store for scans and cards."""

import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from ..core.diagnostics import ScanDiagnostics
from ..core.types import CardRecord, ScanAttempt, ScanStatus
from ..utils.config import settings
from ..utils.error_handler import StoreError
from ..utils.log import get_logger

_CARD_COLUMNS = (
    "id", "name", "type", "attribute", "level", "attack", "defense",
    "description", "rarity", "external_code", "source_image_ref",
    "created_at", "updated_at",
)
_SCAN_COLUMNS = (
    "id", "owner_id", "source_image_ref", "status", "confidence",
    "extracted_text", "resolved_card_ref", "created_at", "updated_at",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _upsert_sql(table: str, columns) -> str:
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in ("id", "created_at"))
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


class RecordStore:
    """SQLite store for ScanAttempts and CardRecords.

    Every write is a single-row upsert; the store never deletes.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.logger = get_logger(__name__)
        self.db_path = Path(db_path or settings.STORE_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        """Initialize SQLite database with required tables."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cards (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        type TEXT NOT NULL,
                        attribute TEXT,
                        level INTEGER,
                        attack INTEGER,
                        defense INTEGER,
                        description TEXT NOT NULL DEFAULT '',
                        rarity TEXT NOT NULL,
                        external_code TEXT,
                        source_image_ref TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_cards_external_code ON cards(external_code)"
                )

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS scans (
                        id TEXT PRIMARY KEY,
                        owner_id TEXT NOT NULL,
                        source_image_ref TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        confidence REAL,
                        extracted_text TEXT,
                        resolved_card_ref TEXT REFERENCES cards(id),
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        claim_token TEXT,
                        claimed_at TEXT
                    )
                """
                )
                existing = {row["name"] for row in conn.execute("PRAGMA table_info(scans)")}
                for column in ("claim_token", "claimed_at"):
                    if column not in existing:
                        conn.execute(f"ALTER TABLE scans ADD COLUMN {column} TEXT")
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_scans_owner ON scans(owner_id, created_at)"
                )
                conn.commit()
                self.logger.info("Database initialized successfully", db_path=str(self.db_path))

        except sqlite3.Error as e:
            self.logger.error("Error initializing database", error=str(e))
            raise StoreError("Could not initialize record store", details={"db_path": str(self.db_path)}) from e

    # Scans

    def save_scan(self, scan: ScanAttempt) -> ScanAttempt:
        """Insert or update a scan, stamping its timestamps."""
        now = _now()
        scan.created_at = scan.created_at or now
        scan.updated_at = now
        row = (
            scan.id,
            scan.owner_id,
            scan.source_image_ref,
            scan.status.value,
            scan.confidence,
            scan.extracted_text.to_json() if scan.extracted_text is not None else None,
            scan.resolved_card_ref,
            scan.created_at.isoformat(),
            scan.updated_at.isoformat(),
        )
        try:
            with self._connect() as conn:
                conn.execute(_upsert_sql("scans", _SCAN_COLUMNS), row)
                conn.commit()
        except sqlite3.Error as e:
            self.logger.error("Error saving scan", scan_id=scan.id, error=str(e))
            raise StoreError("Could not save scan", details={"scan_id": scan.id}) from e

        self.logger.debug("Scan saved", scan_id=scan.id, status=scan.status.value)
        return scan

    def get_scan(self, scan_id: str) -> Optional[ScanAttempt]:
        row = self._fetch_one("SELECT * FROM scans WHERE id = ?", (scan_id,))
        return self._row_to_scan(row) if row else None

    def list_scans(self, owner_id: str, limit: int = 50, offset: int = 0) -> List[ScanAttempt]:
        """Scans for one owner, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM scans WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (owner_id, limit, offset),
        )
        return [self._row_to_scan(row) for row in rows]

    def count_scans(self, owner_id: str) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS n FROM scans WHERE owner_id = ?", (owner_id,))
        return row["n"] if row else 0

    def claim_scan(self, scan_id: str, token: str, stale_after_s: float) -> bool:
        """Mark a scan as having an operation in flight under ``token``.

        Returns False while another claim younger than ``stale_after_s`` is
        held, or when the scan does not exist. Atomic across processes
        sharing the database.
        """
        now = _now()
        cutoff = (now - timedelta(seconds=stale_after_s)).isoformat()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE scans SET claim_token = ?, claimed_at = ? "
                    "WHERE id = ? AND (claim_token IS NULL OR claimed_at < ?)",
                    (token, now.isoformat(), scan_id, cutoff),
                )
                conn.commit()
        except sqlite3.Error as e:
            self.logger.error("Error claiming scan", scan_id=scan_id, error=str(e))
            raise StoreError("Could not claim scan", details={"scan_id": scan_id}) from e
        return cursor.rowcount == 1

    def release_scan(self, scan_id: str, token: str) -> None:
        """Drop the claim on a scan if ``token`` still holds it."""
        try:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE scans SET claim_token = NULL, claimed_at = NULL WHERE id = ? AND claim_token = ?",
                    (scan_id, token),
                )
                conn.commit()
        except sqlite3.Error as e:
            self.logger.error("Error releasing scan", scan_id=scan_id, error=str(e))
            raise StoreError("Could not release scan", details={"scan_id": scan_id}) from e

    def is_claimed(self, scan_id: str) -> bool:
        row = self._fetch_one("SELECT claim_token FROM scans WHERE id = ?", (scan_id,))
        return bool(row and row["claim_token"])

    # Cards

    def save_card(self, card: CardRecord) -> CardRecord:
        """Insert or update a card; new cards get an id."""
        now = _now()
        card.id = card.id or str(uuid.uuid4())
        card.created_at = card.created_at or now
        card.updated_at = now
        row = tuple(
            value.isoformat() if isinstance(value, datetime) else value
            for value in (getattr(card, column) for column in _CARD_COLUMNS)
        )
        try:
            with self._connect() as conn:
                conn.execute(_upsert_sql("cards", _CARD_COLUMNS), row)
                conn.commit()
        except sqlite3.Error as e:
            self.logger.error("Error saving card", card_id=card.id, error=str(e))
            raise StoreError("Could not save card", details={"card_id": card.id}) from e

        self.logger.debug("Card saved", card_id=card.id, name=card.name)
        return card

    def get_card(self, card_id: str) -> Optional[CardRecord]:
        row = self._fetch_one("SELECT * FROM cards WHERE id = ?", (card_id,))
        return self._row_to_card(row) if row else None

    def card_in_use(self, card_id: str, exclude_scan_id: Optional[str] = None) -> bool:
        """True when a scan other than ``exclude_scan_id`` resolves to the card."""
        row = self._fetch_one(
            "SELECT COUNT(*) AS n FROM scans WHERE resolved_card_ref = ? AND (? IS NULL OR id != ?)",
            (card_id, exclude_scan_id, exclude_scan_id),
        )
        return bool(row and row["n"])

    def find_card_by_name(self, name: str) -> Optional[CardRecord]:
        """Exact name first, then a case-insensitive substring match."""
        if not name:
            return None
        row = self._fetch_one(
            "SELECT * FROM cards WHERE name = ? ORDER BY created_at LIMIT 1", (name,)
        )
        if row is None:
            row = self._fetch_one(
                "SELECT * FROM cards WHERE LOWER(name) LIKE '%' || LOWER(?) || '%' ESCAPE '\\' "
                "ORDER BY created_at LIMIT 1",
                (_like_escape(name),),
            )
        return self._row_to_card(row) if row else None

    def find_card_by_external_code(self, external_code: str) -> Optional[CardRecord]:
        if not external_code:
            return None
        row = self._fetch_one(
            "SELECT * FROM cards WHERE external_code = ? ORDER BY created_at LIMIT 1",
            (external_code,),
        )
        return self._row_to_card(row) if row else None

    # Helpers

    def _fetch_one(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            self.logger.error("Error reading record store", error=str(e))
            raise StoreError("Could not read record store") from e

    def _fetch_all(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            self.logger.error("Error reading record store", error=str(e))
            raise StoreError("Could not read record store") from e

    @staticmethod
    def _row_to_scan(row: sqlite3.Row) -> ScanAttempt:
        return ScanAttempt(
            id=row["id"],
            owner_id=row["owner_id"],
            source_image_ref=row["source_image_ref"],
            status=ScanStatus(row["status"]),
            confidence=row["confidence"],
            extracted_text=ScanDiagnostics.from_json(row["extracted_text"]),
            resolved_card_ref=row["resolved_card_ref"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> CardRecord:
        values = {column: row[column] for column in _CARD_COLUMNS}
        values["created_at"] = _parse_ts(values["created_at"])
        values["updated_at"] = _parse_ts(values["updated_at"])
        return CardRecord(**values)
