from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, replace
from pathlib import Path

from lp_custody.core.custody.errors import PositionNotFound


@dataclass(frozen=True)
class PositionRecord:
    position_id: int
    owner: str
    liquidity: int
    asset_low: str
    asset_high: str

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValueError("position owner must not be empty")
        if self.liquidity < 0:
            raise ValueError(f"liquidity must be non-negative, got {self.liquidity}")
        if int(self.asset_low, 16) >= int(self.asset_high, 16):
            raise ValueError(
                f"assets must be distinct and canonically ordered: "
                f"{self.asset_low}, {self.asset_high}"
            )

    def as_dict(self) -> dict[str, object]:
        return {
            "position_id": self.position_id,
            "owner": self.owner,
            "liquidity": self.liquidity,
            "asset_low": self.asset_low,
            "asset_high": self.asset_high,
        }


class PositionLedger:
    """In-process position table keyed by position id.

    Records are only ever added or have their liquidity rewritten; nothing is
    deleted and the owner of a record never changes.
    """

    def __init__(self) -> None:
        self._records: dict[int, PositionRecord] = {}

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PositionRecord]:
        return iter(sorted(self._records.values(), key=lambda r: r.position_id))

    def get(self, position_id: int) -> PositionRecord:
        try:
            return self._records[int(position_id)]
        except KeyError:
            raise PositionNotFound(int(position_id)) from None

    def owner_of(self, position_id: int) -> str:
        return self.get(position_id).owner

    def positions_of(self, owner: str) -> list[PositionRecord]:
        target = owner.lower()
        return [r for r in self if r.owner.lower() == target]

    def insert(self, record: PositionRecord) -> None:
        if record.position_id in self._records:
            raise ValueError(f"position {record.position_id} is already recorded")
        self._persist_insert(record)
        self._records[record.position_id] = record

    def set_liquidity(self, position_id: int, liquidity: int) -> PositionRecord:
        updated = replace(self.get(position_id), liquidity=int(liquidity))
        self._persist_liquidity(updated)
        self._records[updated.position_id] = updated
        return updated

    def _persist_insert(self, record: PositionRecord) -> None:
        pass

    def _persist_liquidity(self, record: PositionRecord) -> None:
        pass


class SqlitePositionLedger(PositionLedger):
    """PositionLedger that writes through to a sqlite file.

    Liquidity is stored as TEXT because uint128 values overflow sqlite INTEGER.
    """

    def __init__(self, db_path: str | Path) -> None:
        super().__init__()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # autocommit
        )
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._init_schema()
            self._load()

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS positions (
              position_id TEXT PRIMARY KEY,
              owner TEXT NOT NULL,
              liquidity TEXT NOT NULL,
              asset_low TEXT NOT NULL,
              asset_high TEXT NOT NULL,
              created_at INTEGER NOT NULL,
              updated_at INTEGER NOT NULL
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_positions_owner ON positions(owner);")

    def _load(self) -> None:
        rows = self._conn.execute(
            "SELECT position_id, owner, liquidity, asset_low, asset_high FROM positions"
        ).fetchall()
        for row in rows:
            record = PositionRecord(
                position_id=int(row["position_id"]),
                owner=row["owner"],
                liquidity=int(row["liquidity"]),
                asset_low=row["asset_low"],
                asset_high=row["asset_high"],
            )
            self._records[record.position_id] = record

    def _persist_insert(self, record: PositionRecord) -> None:
        now = int(time.time())
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO positions(position_id, owner, liquidity, asset_low, asset_high, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(record.position_id),
                    record.owner,
                    str(record.liquidity),
                    record.asset_low,
                    record.asset_high,
                    now,
                    now,
                ),
            )

    def _persist_liquidity(self, record: PositionRecord) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE positions SET liquidity = ?, updated_at = ? WHERE position_id = ?",
                (str(record.liquidity), int(time.time()), str(record.position_id)),
            )
