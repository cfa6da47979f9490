"""
SQLite-backed engine store.

One database file holds channels, flows (with nodes and edges), executions,
execution logs, processed-message markers and the inbound conversation log.

Concurrency anchors live in the schema, not in process memory:
- processed_messages.message_id is the primary key, so a duplicate delivery
  loses the INSERT race and becomes a no-op
- a partial unique index allows one running/waiting execution per
  (customer_id, channel_id)
- executions carry a version column; save() is a conditional UPDATE

Timestamps are stored as UTC ISO-8601 strings with microseconds so that
lexical order equals chronological order.
"""

import copy
import dataclasses
import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from engine.errors import ExecutionConflict
from engine.store.base import ChannelConfigStore, ConversationLog, ExecutionStore, FlowRepository
from engine.types import (
    ChannelConfig,
    Edge,
    Execution,
    ExecutionLogEntry,
    Flow,
    FlowGraph,
    InboundEvent,
    Node,
    TriggerDescriptor,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS channels (
    id TEXT PRIMARY KEY,
    organization_id TEXT,
    phone_number_id TEXT NOT NULL,
    phone_number TEXT NOT NULL DEFAULT '',
    access_token TEXT NOT NULL,
    verify_token TEXT NOT NULL,
    app_secret TEXT,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS flows (
    id TEXT PRIMARY KEY,
    organization_id TEXT,
    channel_id TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    trigger_type TEXT NOT NULL,
    trigger_value TEXT,
    case_sensitive INTEGER NOT NULL DEFAULT 0,
    priority INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_published INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_flows_channel ON flows(channel_id);

CREATE TABLE IF NOT EXISTS flow_nodes (
    flow_id TEXT NOT NULL,
    id TEXT NOT NULL,
    type TEXT NOT NULL,
    label TEXT NOT NULL DEFAULT '',
    position_x REAL NOT NULL DEFAULT 0,
    position_y REAL NOT NULL DEFAULT 0,
    config TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (flow_id, id)
);

CREATE TABLE IF NOT EXISTS flow_edges (
    id TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    source_node_id TEXT NOT NULL,
    source_handle TEXT,
    target_node_id TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_edges_flow ON flow_edges(flow_id);

CREATE TABLE IF NOT EXISTS flow_executions (
    id TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    status TEXT NOT NULL,
    current_node_id TEXT,
    variables TEXT NOT NULL DEFAULT '{}',
    waiting_for TEXT,
    expires_at TEXT,
    resume_at TEXT,
    started_at TEXT NOT NULL,
    updated_at TEXT,
    completed_at TEXT,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_one_active_execution
ON flow_executions(customer_id, channel_id)
WHERE status IN ('running', 'waiting');

CREATE INDEX IF NOT EXISTS idx_executions_waiting
ON flow_executions(status, waiting_for);

CREATE TABLE IF NOT EXISTS execution_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id TEXT NOT NULL,
    node_id TEXT,
    action TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_logs_execution ON execution_logs(execution_id);

CREATE TABLE IF NOT EXISTS processed_messages (
    message_id TEXT PRIMARY KEY,
    processed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    message_id TEXT,
    direction TEXT NOT NULL,
    type TEXT NOT NULL,
    content TEXT,
    media_url TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_customer
ON conversation_messages(channel_id, customer_id);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(data: Any) -> str:
    return json.dumps(data, default=str)


class SQLiteStore(ExecutionStore, FlowRepository, ChannelConfigStore, ConversationLog):
    """
    SQLite implementation of every engine persistence interface.

    File databases open a connection per operation (WAL mode).
    ':memory:' keeps one shared connection, since each new connection
    would see an empty database.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to SQLite database file.
                    If None, uses ':memory:' (useful for testing).
        """
        self.db_path = db_path or ":memory:"
        self._lock = threading.RLock()
        self._shared: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._shared = sqlite3.connect(self.db_path, check_same_thread=False)
        self._initialize_db()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.execute("PRAGMA busy_timeout=10000")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._shared or self._open()
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                if conn is not self._shared:
                    conn.close()

    def _initialize_db(self) -> None:
        """Create the schema. Enables WAL mode for file databases."""
        with self._connection() as conn:
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=FULL")
            conn.executescript(SCHEMA)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(flow_executions)")}
            if "updated_at" not in columns:
                # Databases created before walks stamped their last save
                conn.execute("ALTER TABLE flow_executions ADD COLUMN updated_at TEXT")
        logger.debug(f"SQLite engine store initialized: {self.db_path}")

    def ping(self) -> bool:
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            logger.warning(f"SQLite store unreachable: {e}")
            return False
        return True

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _execution(row: sqlite3.Row) -> Execution:
        return Execution(
            id=row["id"],
            flow_id=row["flow_id"],
            customer_id=row["customer_id"],
            channel_id=row["channel_id"],
            status=row["status"],
            current_node_id=row["current_node_id"],
            variables=json.loads(row["variables"] or "{}"),
            waiting_for=row["waiting_for"],
            expires_at=_dt(row["expires_at"]),
            resume_at=_dt(row["resume_at"]),
            started_at=_dt(row["started_at"]),
            updated_at=_dt(row["updated_at"]),
            completed_at=_dt(row["completed_at"]),
            version=row["version"],
        )

    @staticmethod
    def _flow(row: sqlite3.Row) -> Flow:
        return Flow(
            id=row["id"],
            organization_id=row["organization_id"],
            channel_id=row["channel_id"],
            name=row["name"],
            trigger=TriggerDescriptor(
                type=row["trigger_type"],
                value=row["trigger_value"],
                case_sensitive=bool(row["case_sensitive"]),
            ),
            priority=row["priority"],
            is_active=bool(row["is_active"]),
            is_published=bool(row["is_published"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def find_waiting(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM flow_executions
                WHERE customer_id = ? AND channel_id = ? AND status = 'waiting'
                """,
                (customer_id, channel_id),
            ).fetchone()
        return self._execution(row) if row else None

    def find_active(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM flow_executions
                WHERE customer_id = ? AND channel_id = ?
                AND status IN ('running', 'waiting')
                """,
                (customer_id, channel_id),
            ).fetchone()
        return self._execution(row) if row else None

    def create(
        self,
        flow_id: str,
        customer_id: str,
        channel_id: str,
        current_node_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Execution:
        execution = Execution(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            customer_id=customer_id,
            channel_id=channel_id,
            status="running",
            current_node_id=current_node_id,
            variables=copy.deepcopy(variables or {}),
            started_at=now or utcnow(),
        )
        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT INTO flow_executions
                    (id, flow_id, customer_id, channel_id, status, current_node_id,
                     variables, started_at, updated_at, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                    """,
                    (
                        execution.id,
                        flow_id,
                        customer_id,
                        channel_id,
                        execution.status,
                        current_node_id,
                        _dumps(execution.variables),
                        _ts(execution.started_at),
                        _ts(execution.updated_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ExecutionConflict(
                f"Active execution already exists for {customer_id} on {channel_id}"
            ) from e

        logger.info(
            f"Execution created: {execution.id}",
            extra={"execution_id": execution.id, "flow_id": flow_id, "customer_id": customer_id},
        )
        return execution

    def save(self, execution: Execution) -> Execution:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE flow_executions
                SET status = ?, current_node_id = ?, variables = ?, waiting_for = ?,
                    expires_at = ?, resume_at = ?, updated_at = ?, completed_at = ?,
                    version = version + 1
                WHERE id = ? AND version = ?
                """,
                (
                    execution.status,
                    execution.current_node_id,
                    _dumps(execution.variables),
                    execution.waiting_for,
                    _ts(execution.expires_at),
                    _ts(execution.resume_at),
                    _ts(execution.updated_at),
                    _ts(execution.completed_at),
                    execution.id,
                    execution.version,
                ),
            )
            if cursor.rowcount != 1:
                raise ExecutionConflict(f"Stale write for execution {execution.id}")

        return dataclasses.replace(
            execution,
            variables=copy.deepcopy(execution.variables),
            version=execution.version + 1,
        )

    def get(self, execution_id: str) -> Optional[Execution]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM flow_executions WHERE id = ?", (execution_id,)
            ).fetchone()
        return self._execution(row) if row else None

    def append_log(self, entry: ExecutionLogEntry) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO execution_logs (execution_id, node_id, action, data, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entry.execution_id, entry.node_id, entry.action, _dumps(entry.data), _ts(entry.created_at)),
            )

    def list_logs(self, execution_id: str) -> List[ExecutionLogEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM execution_logs WHERE execution_id = ? ORDER BY id",
                (execution_id,),
            ).fetchall()
        return [
            ExecutionLogEntry(
                execution_id=row["execution_id"],
                node_id=row["node_id"],
                action=row["action"],
                data=json.loads(row["data"] or "{}"),
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    def mark_processed(self, message_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO processed_messages (message_id, processed_at) VALUES (?, ?)",
                (message_id, _ts(utcnow())),
            )
            return cursor.rowcount == 1

    def find_expired_waits(self, now: datetime) -> List[Execution]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM flow_executions
                WHERE status = 'waiting' AND waiting_for != 'delay'
                AND expires_at IS NOT NULL AND expires_at <= ?
                ORDER BY expires_at
                """,
                (_ts(now),),
            ).fetchall()
        return [self._execution(row) for row in rows]

    def find_due_delays(self, now: datetime) -> List[Execution]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM flow_executions
                WHERE status = 'waiting' AND waiting_for = 'delay'
                AND resume_at IS NOT NULL AND resume_at <= ?
                ORDER BY resume_at
                """,
                (_ts(now),),
            ).fetchall()
        return [self._execution(row) for row in rows]

    def find_stale_running(self, cutoff: datetime) -> List[Execution]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM flow_executions
                WHERE status = 'running'
                AND COALESCE(updated_at, started_at) <= ?
                ORDER BY COALESCE(updated_at, started_at)
                """,
                (_ts(cutoff),),
            ).fetchall()
        return [self._execution(row) for row in rows]

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def list_candidate_flows(self, channel_id: str) -> List[Flow]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM flows
                WHERE channel_id = ? AND is_active = 1 AND is_published = 1
                """,
                (channel_id,),
            ).fetchall()
        return [self._flow(row) for row in rows]

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM flows WHERE id = ?", (flow_id,)).fetchone()
        return self._flow(row) if row else None

    def load_graph(self, flow_id: str) -> Optional[FlowGraph]:
        with self._connection() as conn:
            flow_row = conn.execute("SELECT * FROM flows WHERE id = ?", (flow_id,)).fetchone()
            if flow_row is None:
                return None
            node_rows = conn.execute(
                "SELECT * FROM flow_nodes WHERE flow_id = ? ORDER BY rowid", (flow_id,)
            ).fetchall()
            edge_rows = conn.execute(
                "SELECT * FROM flow_edges WHERE flow_id = ? ORDER BY rowid", (flow_id,)
            ).fetchall()

        nodes = [
            Node(
                id=row["id"],
                flow_id=row["flow_id"],
                type=row["type"],
                label=row["label"],
                position=(row["position_x"], row["position_y"]),
                config=json.loads(row["config"] or "{}"),
            )
            for row in node_rows
        ]
        edges = [
            Edge(
                id=row["id"],
                flow_id=row["flow_id"],
                source_node_id=row["source_node_id"],
                source_handle=row["source_handle"],
                target_node_id=row["target_node_id"],
            )
            for row in edge_rows
        ]
        return FlowGraph(flow=self._flow(flow_row), nodes=nodes, edges=edges)

    def save_flow(self, flow: Flow, nodes: List[Node], edges: List[Edge]) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO flows
                (id, organization_id, channel_id, name, trigger_type, trigger_value,
                 case_sensitive, priority, is_active, is_published, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    flow.id,
                    flow.organization_id,
                    flow.channel_id,
                    flow.name,
                    flow.trigger.type,
                    flow.trigger.value,
                    int(flow.trigger.case_sensitive),
                    flow.priority,
                    int(flow.is_active),
                    int(flow.is_published),
                    _ts(flow.created_at),
                    _ts(flow.updated_at),
                ),
            )
            conn.execute("DELETE FROM flow_nodes WHERE flow_id = ?", (flow.id,))
            conn.execute("DELETE FROM flow_edges WHERE flow_id = ?", (flow.id,))
            conn.executemany(
                """
                INSERT INTO flow_nodes (flow_id, id, type, label, position_x, position_y, config)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (flow.id, n.id, n.type, n.label, n.position[0], n.position[1], _dumps(n.config))
                    for n in nodes
                ],
            )
            conn.executemany(
                """
                INSERT INTO flow_edges (id, flow_id, source_node_id, source_handle, target_node_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (e.id, flow.id, e.source_node_id, e.source_handle, e.target_node_id)
                    for e in edges
                ],
            )

    def set_published(self, flow_id: str, published: bool) -> None:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE flows SET is_published = ? WHERE id = ?",
                (int(published), flow_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(flow_id)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def load_config(self, channel_id: str) -> Optional[ChannelConfig]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM channels WHERE id = ?", (channel_id,)).fetchone()
        if row is None:
            return None
        return ChannelConfig(
            id=row["id"],
            organization_id=row["organization_id"],
            phone_number_id=row["phone_number_id"],
            phone_number=row["phone_number"],
            access_token=row["access_token"],
            verify_token=row["verify_token"],
            app_secret=row["app_secret"],
            is_active=bool(row["is_active"]),
        )

    def save_config(self, config: ChannelConfig) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO channels
                (id, organization_id, phone_number_id, phone_number, access_token,
                 verify_token, app_secret, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    organization_id = excluded.organization_id,
                    phone_number_id = excluded.phone_number_id,
                    phone_number = excluded.phone_number,
                    access_token = excluded.access_token,
                    verify_token = excluded.verify_token,
                    app_secret = excluded.app_secret,
                    is_active = excluded.is_active
                """,
                (
                    config.id,
                    config.organization_id,
                    config.phone_number_id,
                    config.phone_number,
                    config.access_token,
                    config.verify_token,
                    config.app_secret,
                    int(config.is_active),
                ),
            )

    # ------------------------------------------------------------------
    # Conversation log
    # ------------------------------------------------------------------

    def record_inbound(self, channel_id: str, event: InboundEvent) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages
                (channel_id, customer_id, message_id, direction, type, content, media_url, created_at)
                VALUES (?, ?, ?, 'inbound', ?, ?, ?, ?)
                """,
                (
                    channel_id,
                    event.sender_id,
                    event.message_id,
                    event.type,
                    event.text,
                    event.media_url,
                    _ts(event.timestamp or utcnow()),
                ),
            )

    def list_messages(self, channel_id: str, customer_id: str) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM conversation_messages
                WHERE channel_id = ? AND customer_id = ?
                ORDER BY id
                """,
                (channel_id, customer_id),
            ).fetchall()
        return [
            {
                "channel_id": row["channel_id"],
                "customer_id": row["customer_id"],
                "message_id": row["message_id"],
                "direction": row["direction"],
                "type": row["type"],
                "content": row["content"],
                "media_url": row["media_url"],
                "created_at": _dt(row["created_at"]),
            }
            for row in rows
        ]
