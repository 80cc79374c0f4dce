"""SQLite-backed repository for positions, curves, prices and keeper jobs."""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import orjson
import structlog

from ..curve.precision import check_bin_set
from ..errors import DataUnavailableError, MalformedDataError, PersistenceError
from ..models.curve import PriceBin
from ..models.jobs import (
    Job,
    JobStatus,
    JobTrigger,
    JobType,
    RebalanceRecord,
    decode_job_result,
    encode_job_result,
)
from ..models.positions import (
    Pool,
    Position,
    PositionStatus,
    Strategy,
    StrategyType,
    decode_strategy_config,
    encode_strategy_config,
)
from ..models.signals import AdvisorySignal, PricePoint, SignalAction, SignalUrgency
from ..utils.time import format_time, parse_time, utc_now
from .repository import Repository

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS pools (
    id TEXT PRIMARY KEY,
    token_a TEXT NOT NULL,
    token_b TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    tvl REAL,
    volume_24h REAL,
    pool_address TEXT
);

CREATE TABLE IF NOT EXISTS strategies (
    id TEXT PRIMARY KEY,
    name TEXT,
    pool_id TEXT,
    strategy_type TEXT NOT NULL,
    rebalance_threshold REAL NOT NULL DEFAULT 5.0,
    auto_rebalance INTEGER NOT NULL DEFAULT 1,
    mcu_enabled INTEGER NOT NULL DEFAULT 0,
    mcu_bias_factor REAL NOT NULL DEFAULT 1.3,
    stop_loss REAL,
    take_profit REAL,
    ml_enabled INTEGER NOT NULL DEFAULT 1,
    ml_confidence_threshold REAL NOT NULL DEFAULT 90.0,
    config TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    pool_id TEXT NOT NULL,
    lower_price REAL NOT NULL,
    upper_price REAL NOT NULL,
    liquidity REAL NOT NULL,
    strategy_id TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    entry_price REAL,
    user_id TEXT,
    position_address TEXT
);

CREATE TABLE IF NOT EXISTS price_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_id TEXT NOT NULL,
    price REAL NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS precision_bins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_id TEXT NOT NULL,
    bin_index INTEGER NOT NULL,
    lower_price REAL NOT NULL,
    upper_price REAL NOT NULL,
    liquidity_allocation REAL NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS keeper_jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    trigger_type TEXT NOT NULL,
    position_id TEXT NOT NULL,
    strategy_id TEXT,
    status TEXT NOT NULL,
    priority INTEGER NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    error_message TEXT,
    result TEXT
);

CREATE TABLE IF NOT EXISTS ml_signals (
    id TEXT PRIMARY KEY,
    pool_id TEXT NOT NULL,
    action TEXT NOT NULL,
    confidence REAL NOT NULL,
    predicted_price REAL,
    predicted_volatility REAL,
    urgency TEXT,
    payload TEXT NOT NULL,
    executed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rebalance_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    position_id TEXT NOT NULL,
    strategy_id TEXT,
    job_id TEXT,
    trigger_type TEXT NOT NULL,
    old_lower_price REAL,
    old_upper_price REAL,
    new_lower_price REAL,
    new_upper_price REAL,
    tx_signature TEXT,
    success INTEGER NOT NULL,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_price_history_pool ON price_history(pool_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_strategies_pool ON strategies(pool_id);
CREATE INDEX IF NOT EXISTS idx_bins_strategy ON precision_bins(strategy_id, active);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON keeper_jobs(status, priority, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_position ON keeper_jobs(position_id);
CREATE INDEX IF NOT EXISTS idx_signals_pool ON ml_signals(pool_id, created_at);
CREATE INDEX IF NOT EXISTS idx_rebalance_position ON rebalance_history(position_id);
"""

# Job dataclass field -> keeper_jobs column encoder
_JOB_COLUMN_ENCODERS = {
    "job_type": lambda v: v.value,
    "trigger": lambda v: v.value,
    "position_id": lambda v: v,
    "strategy_id": lambda v: v,
    "status": lambda v: v.value,
    "priority": lambda v: v,
    "retry_count": lambda v: v,
    "max_retries": lambda v: v,
    "created_at": format_time,
    "started_at": format_time,
    "completed_at": format_time,
    "error_message": lambda v: v,
    "result": lambda v: _dumps(encode_job_result(v)),
}

_JOB_COLUMN_NAMES = {"trigger": "trigger_type"}


def _job_column(field_name: str) -> str:
    return _JOB_COLUMN_NAMES.get(field_name, field_name)


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return orjson.dumps(value).decode("utf-8")


def _loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    return orjson.loads(value)


class SqliteRepository(Repository):
    """SQLite persistence. Every sqlite3 failure surfaces as PersistenceError."""

    def __init__(self, db_path: str = "keeper.db"):
        self.db_path = Path(db_path)
        self.logger = logger.bind(db_path=str(self.db_path))
        self._lock = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection("init_schema") as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Get database connection, translating driver errors."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error("Database error", operation=operation, error=str(e))
            raise PersistenceError(
                f"Database error during {operation}: {e}",
                operation=operation,
                target=str(self.db_path),
            ) from e
        finally:
            if conn:
                conn.close()

    # Positions, strategies, pools

    def get_active_positions(self) -> list[Position]:
        with self._get_connection("get_active_positions") as conn:
            rows = conn.execute(
                "SELECT * FROM positions WHERE status = ? ORDER BY id",
                (PositionStatus.ACTIVE.value,),
            ).fetchall()
            return [self._row_to_position(row) for row in rows]

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._get_connection("get_position") as conn:
            row = conn.execute("SELECT * FROM positions WHERE id = ?",
                               (position_id,)).fetchone()
            return self._row_to_position(row) if row else None

    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        with self._get_connection("get_strategy") as conn:
            row = conn.execute("SELECT * FROM strategies WHERE id = ?",
                               (strategy_id,)).fetchone()
            return self._row_to_strategy(row) if row else None

    def get_pool_strategies(self, pool_id: str) -> list[Strategy]:
        with self._get_connection("get_pool_strategies") as conn:
            rows = conn.execute("SELECT * FROM strategies WHERE pool_id = ? ORDER BY id",
                                (pool_id,)).fetchall()
            return [self._row_to_strategy(row) for row in rows]

    def get_active_pools(self) -> list[Pool]:
        with self._get_connection("get_active_pools") as conn:
            rows = conn.execute("SELECT * FROM pools WHERE active = 1 ORDER BY id").fetchall()
            return [self._row_to_pool(row) for row in rows]

    def get_pool(self, pool_id: str) -> Optional[Pool]:
        with self._get_connection("get_pool") as conn:
            row = conn.execute("SELECT * FROM pools WHERE id = ?", (pool_id,)).fetchone()
            return self._row_to_pool(row) if row else None

    def upsert_pool(self, pool: Pool) -> None:
        with self._lock, self._get_connection("upsert_pool") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO pools (
                    id, token_a, token_b, active, tvl, volume_24h, pool_address
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (pool.id, pool.token_a, pool.token_b, int(pool.active), pool.tvl,
                  pool.volume_24h, pool.pool_address))
            conn.commit()

    def upsert_position(self, position: Position) -> None:
        with self._lock, self._get_connection("upsert_position") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO positions (
                    id, pool_id, lower_price, upper_price, liquidity, strategy_id,
                    status, entry_price, user_id, position_address
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (position.id, position.pool_id, position.lower_price, position.upper_price,
                  position.liquidity, position.strategy_id, position.status.value,
                  position.entry_price, position.user_id, position.position_address))
            conn.commit()

    def upsert_strategy(self, strategy: Strategy) -> None:
        with self._lock, self._get_connection("upsert_strategy") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO strategies (
                    id, name, pool_id, strategy_type, rebalance_threshold, auto_rebalance,
                    mcu_enabled, mcu_bias_factor, stop_loss, take_profit, ml_enabled,
                    ml_confidence_threshold, config
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (strategy.id, strategy.name, strategy.pool_id, strategy.strategy_type.value,
                  strategy.rebalance_threshold_pct, int(strategy.auto_rebalance),
                  int(strategy.mcu_enabled), strategy.mcu_bias_factor, strategy.stop_loss_pct,
                  strategy.take_profit_pct, int(strategy.ml_enabled),
                  strategy.ml_confidence_threshold,
                  _dumps(encode_strategy_config(strategy.config))))
            conn.commit()

    def update_position_range(self, position_id: str, lower_price: float,
                              upper_price: float) -> Position:
        with self._lock, self._get_connection("update_position_range") as conn:
            cursor = conn.execute(
                "UPDATE positions SET lower_price = ?, upper_price = ? WHERE id = ?",
                (lower_price, upper_price, position_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise DataUnavailableError(f"Position {position_id} not found",
                                           data_type="position")
            row = conn.execute("SELECT * FROM positions WHERE id = ?",
                               (position_id,)).fetchone()
            return self._row_to_position(row)

    # Prices and bins

    def get_latest_price(self, pool_id: str) -> Optional[float]:
        with self._get_connection("get_latest_price") as conn:
            row = conn.execute("""
                SELECT price FROM price_history WHERE pool_id = ?
                ORDER BY timestamp DESC, id DESC LIMIT 1
            """, (pool_id,)).fetchone()
            return float(row["price"]) if row else None

    def record_price(self, pool_id: str, price: float,
                     timestamp: Optional[datetime] = None) -> None:
        with self._lock, self._get_connection("record_price") as conn:
            conn.execute(
                "INSERT INTO price_history (pool_id, price, timestamp) VALUES (?, ?, ?)",
                (pool_id, price, format_time(timestamp or utc_now())),
            )
            conn.commit()

    def get_price_history(self, pool_id: str, limit: int = 100) -> list[PricePoint]:
        with self._get_connection("get_price_history") as conn:
            rows = conn.execute("""
                SELECT price, timestamp FROM price_history WHERE pool_id = ?
                ORDER BY timestamp DESC, id DESC LIMIT ?
            """, (pool_id, limit)).fetchall()
            return [PricePoint(price=float(r["price"]), timestamp=parse_time(r["timestamp"]))
                    for r in rows]

    def get_active_bins(self, strategy_id: str) -> list[PriceBin]:
        with self._get_connection("get_active_bins") as conn:
            rows = conn.execute("""
                SELECT bin_index, lower_price, upper_price, liquidity_allocation
                FROM precision_bins WHERE strategy_id = ? AND active = 1
                ORDER BY bin_index
            """, (strategy_id,)).fetchall()
            return [
                PriceBin(
                    index=r["bin_index"],
                    lower_price=r["lower_price"],
                    upper_price=r["upper_price"],
                    allocation_pct=r["liquidity_allocation"],
                )
                for r in rows
            ]

    def replace_active_bins(self, strategy_id: str, bins: Sequence[PriceBin]) -> None:
        check_bin_set(bins)
        now = format_time(utc_now())
        with self._lock, self._get_connection("replace_active_bins") as conn:
            conn.execute(
                "UPDATE precision_bins SET active = 0 WHERE strategy_id = ? AND active = 1",
                (strategy_id,),
            )
            conn.executemany("""
                INSERT INTO precision_bins (
                    strategy_id, bin_index, lower_price, upper_price,
                    liquidity_allocation, active, created_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?)
            """, [(strategy_id, b.index, b.lower_price, b.upper_price, b.allocation_pct, now)
                  for b in bins])
            conn.commit()

    # Jobs

    def insert_job(self, job: Job) -> str:
        columns = ["id"] + [_job_column(name) for name in _JOB_COLUMN_ENCODERS]
        values = [job.id] + [encode(getattr(job, name))
                             for name, encode in _JOB_COLUMN_ENCODERS.items()]
        placeholders = ", ".join("?" for _ in columns)
        with self._lock, self._get_connection("insert_job") as conn:
            conn.execute(
                f"INSERT INTO keeper_jobs ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            conn.commit()
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._get_connection("get_job") as conn:
            row = conn.execute("SELECT * FROM keeper_jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_job(row) if row else None

    def update_job(self, job_id: str, patch: dict[str, Any]) -> Job:
        return self._patch_job(job_id, patch, expected_status=None, operation="update_job")

    def transition_job(self, job_id: str, expected_status: JobStatus,
                       patch: dict[str, Any]) -> Optional[Job]:
        return self._patch_job(job_id, patch, expected_status=expected_status,
                               operation="transition_job")

    def _patch_job(self, job_id: str, patch: dict[str, Any],
                   expected_status: Optional[JobStatus], operation: str) -> Optional[Job]:
        invalid = set(patch) - set(_JOB_COLUMN_ENCODERS)
        if invalid:
            raise MalformedDataError(
                f"Invalid job patch fields: {sorted(invalid)}",
                context={"job_id": job_id},
            )

        assignments = ", ".join(f"{_job_column(name)} = ?" for name in patch)
        values = [_JOB_COLUMN_ENCODERS[name](value) for name, value in patch.items()]
        sql = f"UPDATE keeper_jobs SET {assignments} WHERE id = ?"
        params = values + [job_id]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)

        with self._lock, self._get_connection(operation) as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            row = conn.execute("SELECT * FROM keeper_jobs WHERE id = ?", (job_id,)).fetchone()

        if row is None:
            raise DataUnavailableError(f"Job {job_id} not found", data_type="job")
        if cursor.rowcount == 0:
            return None
        return self._row_to_job(row)

    def list_pending_jobs(self, limit: int) -> list[Job]:
        with self._get_connection("list_pending_jobs") as conn:
            rows = conn.execute("""
                SELECT * FROM keeper_jobs WHERE status = ?
                ORDER BY priority DESC, created_at ASC, rowid ASC LIMIT ?
            """, (JobStatus.PENDING.value, limit)).fetchall()
            return [self._row_to_job(row) for row in rows]

    def list_jobs(self, status: Optional[JobStatus] = None,
                  position_id: Optional[str] = None) -> list[Job]:
        clauses = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if position_id is not None:
            clauses.append("position_id = ?")
            params.append(position_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._get_connection("list_jobs") as conn:
            rows = conn.execute(
                f"SELECT * FROM keeper_jobs {where} ORDER BY created_at ASC, rowid ASC",
                params,
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def find_open_job(self, position_id: str, job_type: JobType,
                      trigger: JobTrigger) -> Optional[Job]:
        with self._get_connection("find_open_job") as conn:
            row = conn.execute("""
                SELECT * FROM keeper_jobs
                WHERE position_id = ? AND job_type = ? AND trigger_type = ?
                  AND status IN (?, ?)
                ORDER BY created_at ASC, rowid ASC LIMIT 1
            """, (position_id, job_type.value, trigger.value,
                  JobStatus.PENDING.value, JobStatus.PROCESSING.value)).fetchone()
            return self._row_to_job(row) if row else None

    # Signals and audit

    def save_signal(self, pool_id: str, signal: AdvisorySignal) -> str:
        signal_id = uuid.uuid4().hex
        payload = {
            "action": signal.action.value,
            "confidence": signal.confidence,
            "predicted_price": signal.predicted_price,
            "predicted_volatility": signal.predicted_volatility,
            "urgency": signal.urgency.value,
            "reasoning": signal.reasoning,
            "model": signal.model,
        }
        with self._lock, self._get_connection("save_signal") as conn:
            conn.execute("""
                INSERT INTO ml_signals (
                    id, pool_id, action, confidence, predicted_price,
                    predicted_volatility, urgency, payload, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (signal_id, pool_id, signal.action.value, signal.confidence,
                  signal.predicted_price, signal.predicted_volatility, signal.urgency.value,
                  _dumps(payload), format_time(utc_now())))
            conn.commit()
        return signal_id

    def get_signals(self, pool_id: str, min_confidence: float = 90.0,
                    limit: int = 10) -> list[AdvisorySignal]:
        with self._get_connection("get_signals") as conn:
            rows = conn.execute("""
                SELECT payload FROM ml_signals
                WHERE pool_id = ? AND executed = 0 AND confidence >= ?
                ORDER BY created_at DESC, rowid DESC LIMIT ?
            """, (pool_id, min_confidence, limit)).fetchall()
        signals = []
        for row in rows:
            payload = _loads(row["payload"])
            signals.append(AdvisorySignal(
                action=SignalAction(payload["action"]),
                confidence=payload["confidence"],
                predicted_price=payload["predicted_price"],
                urgency=SignalUrgency(payload["urgency"]),
                reasoning=payload["reasoning"],
                predicted_volatility=payload.get("predicted_volatility"),
                model=payload.get("model"),
            ))
        return signals

    def record_rebalance(self, record: RebalanceRecord) -> None:
        with self._lock, self._get_connection("record_rebalance") as conn:
            conn.execute("""
                INSERT INTO rebalance_history (
                    position_id, strategy_id, job_id, trigger_type, old_lower_price,
                    old_upper_price, new_lower_price, new_upper_price, tx_signature,
                    success, error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (record.position_id, record.strategy_id, record.job_id, record.trigger.value,
                  record.old_lower_price, record.old_upper_price, record.new_lower_price,
                  record.new_upper_price, record.tx_signature, int(record.success),
                  record.error_message, format_time(record.created_at)))
            conn.commit()

    def get_rebalance_history(self, position_id: str) -> list[RebalanceRecord]:
        with self._get_connection("get_rebalance_history") as conn:
            rows = conn.execute("""
                SELECT * FROM rebalance_history WHERE position_id = ? ORDER BY id
            """, (position_id,)).fetchall()
        return [
            RebalanceRecord(
                position_id=r["position_id"],
                strategy_id=r["strategy_id"],
                job_id=r["job_id"],
                trigger=JobTrigger(r["trigger_type"]),
                old_lower_price=r["old_lower_price"],
                old_upper_price=r["old_upper_price"],
                new_lower_price=r["new_lower_price"],
                new_upper_price=r["new_upper_price"],
                success=bool(r["success"]),
                tx_signature=r["tx_signature"],
                error_message=r["error_message"],
                created_at=parse_time(r["created_at"]),
            )
            for r in rows
        ]

    # Row decoding

    def _row_to_position(self, row: sqlite3.Row) -> Position:
        return Position(
            id=row["id"],
            pool_id=row["pool_id"],
            lower_price=row["lower_price"],
            upper_price=row["upper_price"],
            liquidity=row["liquidity"],
            strategy_id=row["strategy_id"],
            status=PositionStatus(row["status"]),
            entry_price=row["entry_price"],
            user_id=row["user_id"],
            position_address=row["position_address"],
        )

    def _row_to_strategy(self, row: sqlite3.Row) -> Strategy:
        strategy_type = row["strategy_type"]
        config = decode_strategy_config(strategy_type, _loads(row["config"]))
        return Strategy(
            id=row["id"],
            rebalance_threshold_pct=row["rebalance_threshold"],
            auto_rebalance=bool(row["auto_rebalance"]),
            mcu_enabled=bool(row["mcu_enabled"]),
            mcu_bias_factor=row["mcu_bias_factor"],
            stop_loss_pct=row["stop_loss"],
            take_profit_pct=row["take_profit"],
            strategy_type=StrategyType(strategy_type),
            config=config,
            pool_id=row["pool_id"],
            name=row["name"],
            ml_enabled=bool(row["ml_enabled"]),
            ml_confidence_threshold=row["ml_confidence_threshold"],
        )

    def _row_to_pool(self, row: sqlite3.Row) -> Pool:
        return Pool(
            id=row["id"],
            token_a=row["token_a"],
            token_b=row["token_b"],
            active=bool(row["active"]),
            tvl=row["tvl"],
            volume_24h=row["volume_24h"],
            pool_address=row["pool_address"],
        )

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            job_type=JobType(row["job_type"]),
            trigger=JobTrigger(row["trigger_type"]),
            position_id=row["position_id"],
            strategy_id=row["strategy_id"],
            status=JobStatus(row["status"]),
            priority=row["priority"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            created_at=parse_time(row["created_at"]),
            started_at=parse_time(row["started_at"]),
            completed_at=parse_time(row["completed_at"]),
            error_message=row["error_message"],
            result=decode_job_result(_loads(row["result"])),
        )
