"""
Repository pattern for data access.

SQLite-backed implementations of the stores the detection and remediation
core talks to: project directory, request log, incidents, remediation
actions and project constraints.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ai_incident_guard.core.actions import (
    ActionParameters,
    ActionType,
    parameters_to_dict,
    parse_parameters,
)
from .db import DEFAULT_DB_PATH, get_connection, write_transaction
from .models import (
    Constraint,
    ConstraintKind,
    Incident,
    IncidentDraft,
    IncidentStatus,
    RemediationAction,
    RequestRecord,
    Severity,
    TriggerType,
)

SideEffect = Callable[[sqlite3.Connection], None]


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp with a fixed width so ISO strings sort correctly."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    ``llm_request`` is an append-only ledger: no UPDATE or DELETE is ever
    issued against it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS project (
                id TEXT PRIMARY KEY,
                name TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS llm_request (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL REFERENCES project(id),
                prompt TEXT NOT NULL,
                response TEXT NOT NULL,
                model TEXT NOT NULL,
                latency_ms REAL NOT NULL,
                tokens INTEGER NOT NULL,
                error TEXT,
                risk_score INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_llm_request_project_created
                ON llm_request (project_id, created_at);

            CREATE TABLE IF NOT EXISTS incident (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL REFERENCES project(id),
                severity TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'open',
                root_cause TEXT NOT NULL,
                recommended_fix TEXT NOT NULL,
                affected_requests INTEGER NOT NULL DEFAULT 0,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                resolved_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_incident_project_status
                ON incident (project_id, status, trigger_type);

            CREATE TABLE IF NOT EXISTS remediation_action (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                incident_id INTEGER NOT NULL REFERENCES incident(id),
                action_type TEXT NOT NULL,
                parameters TEXT NOT NULL,
                executed INTEGER NOT NULL DEFAULT 0,
                executed_at TEXT,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS project_constraint (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL REFERENCES project(id),
                kind TEXT NOT NULL,
                value TEXT NOT NULL,
                action_id INTEGER,
                created_at TEXT NOT NULL,
                expires_at TEXT,
                cleared_at TEXT
            );
        """)
        conn.commit()
    finally:
        conn.close()


class ProjectRepository:
    """Project directory: the set of tenants the detection job iterates."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_project(self, project_id: str, name: Optional[str] = None) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO project (id, name, created_at) VALUES (?, ?, ?)",
                (project_id, name, _ts(datetime.now())),
            )
            conn.commit()
        finally:
            conn.close()

    def exists(self, project_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT 1 FROM project WHERE id = ?", (project_id,)).fetchone()
            return row is not None
        finally:
            conn.close()

    def list_all_project_ids(self) -> List[str]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("SELECT id FROM project ORDER BY created_at, id").fetchall()
            return [row["id"] for row in rows]
        finally:
            conn.close()


class RequestLogRepository:
    """Append-only store of logged LLM calls."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def append(self, record: RequestRecord) -> RequestRecord:
        """Insert a request record and return it with its assigned id.

        Args:
            record: The request to record

        Returns:
            The stored record
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO llm_request
                (project_id, prompt, response, model, latency_ms, tokens,
                 error, risk_score, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.project_id,
                record.prompt,
                record.response,
                record.model,
                record.latency_ms,
                record.tokens,
                record.error,
                record.risk_score,
                _ts(record.created_at),
            ))
            conn.commit()
            return RequestRecord(
                id=cursor.lastrowid,
                project_id=record.project_id,
                prompt=record.prompt,
                response=record.response,
                model=record.model,
                latency_ms=record.latency_ms,
                tokens=record.tokens,
                error=record.error,
                risk_score=record.risk_score,
                created_at=record.created_at,
            )
        finally:
            conn.close()

    def recent(self, project_id: str, limit: int = 100) -> List[RequestRecord]:
        """Fetch the most recent requests of a project.

        Args:
            project_id: Project to read
            limit: Maximum number of records to return

        Returns:
            Records ordered by creation time, newest first
        """
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, project_id, prompt, response, model, latency_ms,
                       tokens, error, risk_score, created_at
                FROM llm_request
                WHERE project_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (project_id, limit)).fetchall()
            return [
                RequestRecord(
                    id=row["id"],
                    project_id=row["project_id"],
                    prompt=row["prompt"],
                    response=row["response"],
                    model=row["model"],
                    latency_ms=row["latency_ms"],
                    tokens=row["tokens"],
                    error=row["error"],
                    risk_score=row["risk_score"],
                    created_at=_parse_ts(row["created_at"]),
                )
                for row in rows
            ]
        finally:
            conn.close()


_INCIDENT_COLUMNS = """
    id, project_id, severity, trigger_type, status, root_cause,
    recommended_fix, affected_requests, metadata, created_at, resolved_at
"""


def _row_to_incident(row: sqlite3.Row) -> Incident:
    return Incident(
        id=row["id"],
        project_id=row["project_id"],
        severity=Severity(row["severity"]),
        trigger_type=TriggerType(row["trigger_type"]),
        status=IncidentStatus(row["status"]),
        root_cause=row["root_cause"],
        recommended_fix=row["recommended_fix"],
        affected_requests=row["affected_requests"],
        metadata=json.loads(row["metadata"]),
        created_at=_parse_ts(row["created_at"]),
        resolved_at=_parse_ts(row["resolved_at"]),
    )


class IncidentRepository:
    """Store of incidents and their open/resolved state."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_incident(self, draft: IncidentDraft) -> Incident:
        """Insert a new open incident unconditionally."""
        with write_transaction(self.db_path) as conn:
            return self._insert(conn, draft)

    def create_if_no_open(self, draft: IncidentDraft) -> Tuple[Incident, bool]:
        """Open an incident unless one is already open for the same trigger.

        The lookup and the insert run under one write lock, so two callers
        racing on the same (project, trigger type) produce a single incident.

        Args:
            draft: Incident to open

        Returns:
            (incident, created): the new incident and True, or the already
            open incident and False
        """
        with write_transaction(self.db_path) as conn:
            existing = self._find_open(conn, draft.project_id, draft.trigger_type)
            if existing is not None:
                return existing, False
            return self._insert(conn, draft), True

    def find_open_by_trigger(self, project_id: str, trigger_type: TriggerType) -> Optional[Incident]:
        conn = get_connection(self.db_path)
        try:
            return self._find_open(conn, project_id, trigger_type)
        finally:
            conn.close()

    def get(self, incident_id: int) -> Optional[Incident]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_INCIDENT_COLUMNS} FROM incident WHERE id = ?", (incident_id,)
            ).fetchone()
            return _row_to_incident(row) if row else None
        finally:
            conn.close()

    def resolve(self, incident_id: int, resolved_at: Optional[datetime] = None) -> bool:
        """Move an open incident to resolved.

        Returns:
            True if this call resolved it, False if it was not open
        """
        resolved_at = resolved_at or datetime.now()
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE incident SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
                (IncidentStatus.RESOLVED.value, _ts(resolved_at), incident_id, IncidentStatus.OPEN.value),
            )
            return cursor.rowcount == 1

    def list_by_project(
        self,
        project_id: str,
        status: Optional[IncidentStatus] = None,
        trigger_type: Optional[TriggerType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Incident]:
        """List a project's incidents, newest first, with optional filters."""
        query = f"SELECT {_INCIDENT_COLUMNS} FROM incident WHERE project_id = ?"
        params: List[Any] = [project_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if trigger_type is not None:
            query += " AND trigger_type = ?"
            params.append(trigger_type.value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        conn = get_connection(self.db_path)
        try:
            return [_row_to_incident(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def _find_open(
        self, conn: sqlite3.Connection, project_id: str, trigger_type: TriggerType
    ) -> Optional[Incident]:
        row = conn.execute(
            f"""SELECT {_INCIDENT_COLUMNS} FROM incident
                WHERE project_id = ? AND trigger_type = ? AND status = ?
                ORDER BY created_at DESC, id DESC LIMIT 1""",
            (project_id, trigger_type.value, IncidentStatus.OPEN.value),
        ).fetchone()
        return _row_to_incident(row) if row else None

    def _insert(self, conn: sqlite3.Connection, draft: IncidentDraft) -> Incident:
        created_at = datetime.now()
        cursor = conn.execute("""
            INSERT INTO incident
            (project_id, severity, trigger_type, status, root_cause,
             recommended_fix, affected_requests, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            draft.project_id,
            draft.severity.value,
            draft.trigger_type.value,
            IncidentStatus.OPEN.value,
            draft.root_cause,
            draft.recommended_fix,
            draft.affected_requests,
            json.dumps(draft.metadata),
            _ts(created_at),
        ))
        return Incident(
            id=cursor.lastrowid,
            project_id=draft.project_id,
            severity=draft.severity,
            trigger_type=draft.trigger_type,
            status=IncidentStatus.OPEN,
            root_cause=draft.root_cause,
            recommended_fix=draft.recommended_fix,
            affected_requests=draft.affected_requests,
            metadata=dict(draft.metadata),
            created_at=created_at,
        )


_ACTION_COLUMNS = """
    id, incident_id, action_type, parameters, executed, executed_at,
    metadata, created_at
"""


def _row_to_action(row: sqlite3.Row) -> RemediationAction:
    action_type = ActionType(row["action_type"])
    return RemediationAction(
        id=row["id"],
        incident_id=row["incident_id"],
        action_type=action_type,
        parameters=parse_parameters(action_type, json.loads(row["parameters"])),
        executed=bool(row["executed"]),
        executed_at=_parse_ts(row["executed_at"]),
        metadata=json.loads(row["metadata"]),
        created_at=_parse_ts(row["created_at"]),
    )


class RemediationRepository:
    """Store of remediation actions attached to incidents."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_action(
        self,
        incident_id: int,
        action_type: ActionType,
        parameters: ActionParameters,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RemediationAction:
        """Insert a pending (not executed) action."""
        created_at = datetime.now()
        metadata = metadata or {}
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO remediation_action
                (incident_id, action_type, parameters, executed, metadata, created_at)
                VALUES (?, ?, ?, 0, ?, ?)
            """, (
                incident_id,
                action_type.value,
                json.dumps(parameters_to_dict(parameters)),
                json.dumps(metadata),
                _ts(created_at),
            ))
            conn.commit()
            return RemediationAction(
                id=cursor.lastrowid,
                incident_id=incident_id,
                action_type=action_type,
                parameters=parameters,
                executed=False,
                metadata=dict(metadata),
                created_at=created_at,
            )
        finally:
            conn.close()

    def get(self, action_id: int) -> Optional[RemediationAction]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_ACTION_COLUMNS} FROM remediation_action WHERE id = ?", (action_id,)
            ).fetchone()
            return _row_to_action(row) if row else None
        finally:
            conn.close()

    def list_by_incident(self, incident_id: int, limit: int = 50, offset: int = 0) -> List[RemediationAction]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"""SELECT {_ACTION_COLUMNS} FROM remediation_action
                    WHERE incident_id = ?
                    ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
                (incident_id, limit, offset),
            ).fetchall()
            return [_row_to_action(row) for row in rows]
        finally:
            conn.close()

    def mark_executed(
        self,
        action_id: int,
        executed_at: Optional[datetime] = None,
        side_effect: Optional[SideEffect] = None,
    ) -> bool:
        """Flip an action to executed and run its side effect atomically.

        The flip only happens while ``executed`` is still 0; the side effect
        runs on the same connection and commits with it. If the side effect
        raises, the flip is rolled back too.

        Args:
            action_id: Action to execute
            executed_at: Execution timestamp (defaults to now)
            side_effect: Callback receiving the open connection

        Returns:
            True if this call executed the action, False if it was already
            executed (or no longer exists)
        """
        executed_at = executed_at or datetime.now()
        with write_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT metadata FROM remediation_action WHERE id = ? AND executed = 0",
                (action_id,),
            ).fetchone()
            if row is None:
                return False

            metadata = json.loads(row["metadata"])
            metadata["executed_at"] = _ts(executed_at)
            cursor = conn.execute(
                """UPDATE remediation_action
                   SET executed = 1, executed_at = ?, metadata = ?
                   WHERE id = ? AND executed = 0""",
                (_ts(executed_at), json.dumps(metadata), action_id),
            )
            if cursor.rowcount != 1:
                return False
            if side_effect is not None:
                side_effect(conn)
            return True

    def delete(self, action_id: int) -> bool:
        """Delete a pending action. Executed actions are kept.

        Returns:
            True if a row was deleted
        """
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM remediation_action WHERE id = ? AND executed = 0", (action_id,)
            )
            return cursor.rowcount == 1


def _row_to_constraint(row: sqlite3.Row) -> Constraint:
    return Constraint(
        id=row["id"],
        project_id=row["project_id"],
        kind=ConstraintKind(row["kind"]),
        value=json.loads(row["value"]),
        action_id=row["action_id"],
        created_at=_parse_ts(row["created_at"]),
        expires_at=_parse_ts(row["expires_at"]),
        cleared_at=_parse_ts(row["cleared_at"]),
    )


class SettingsRepository:
    """Store of the project-scoped constraints request handling consults."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def apply_constraint(
        self,
        project_id: str,
        kind: ConstraintKind,
        value: Dict[str, Any],
        action_id: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Record a new constraint.

        When ``conn`` is given the insert joins the caller's transaction.

        Returns:
            Id of the new constraint
        """
        if conn is None:
            with write_transaction(self.db_path) as own_conn:
                return self.apply_constraint(project_id, kind, value, action_id, expires_at, own_conn)

        cursor = conn.execute("""
            INSERT INTO project_constraint
            (project_id, kind, value, action_id, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            project_id,
            kind.value,
            json.dumps(value),
            action_id,
            _ts(datetime.now()),
            _ts(expires_at),
        ))
        return cursor.lastrowid

    def reset_constraints(
        self,
        project_id: str,
        cleared_at: Optional[datetime] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Clear every constraint of a project, restoring default settings.

        Cleared rows are kept for history.

        Returns:
            Number of constraints cleared
        """
        if conn is None:
            with write_transaction(self.db_path) as own_conn:
                return self.reset_constraints(project_id, cleared_at, own_conn)

        cursor = conn.execute(
            "UPDATE project_constraint SET cleared_at = ? WHERE project_id = ? AND cleared_at IS NULL",
            (_ts(cleared_at or datetime.now()), project_id),
        )
        return cursor.rowcount

    def active_constraints(self, project_id: str, now: Optional[datetime] = None) -> List[Constraint]:
        """Constraints neither cleared nor expired, oldest first."""
        now = now or datetime.now()
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, project_id, kind, value, action_id, created_at,
                       expires_at, cleared_at
                FROM project_constraint
                WHERE project_id = ? AND cleared_at IS NULL
                ORDER BY created_at, id
            """, (project_id,)).fetchall()
            constraints = [_row_to_constraint(row) for row in rows]
            return [c for c in constraints if c.is_active(now)]
        finally:
            conn.close()


@dataclass
class Repositories:
    """All stores backed by one database file."""
    projects: ProjectRepository
    requests: RequestLogRepository
    incidents: IncidentRepository
    remediations: RemediationRepository
    settings: SettingsRepository

    @classmethod
    def for_path(cls, db_path: str = DEFAULT_DB_PATH) -> "Repositories":
        """Initialize the schema and return repositories bound to ``db_path``."""
        initialize_schema(db_path)
        return cls(
            projects=ProjectRepository(db_path),
            requests=RequestLogRepository(db_path),
            incidents=IncidentRepository(db_path),
            remediations=RemediationRepository(db_path),
            settings=SettingsRepository(db_path),
        )
