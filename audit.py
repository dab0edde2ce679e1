"""
audit.py
Audit trail of user actions (who did what, when).
"""

from __future__ import annotations

from datetime import datetime, timezone

import db
from models import AuditLog, LogActionType, User


def record(user: User | None, action: LogActionType, details: str, now: datetime | None = None) -> int:
    """Append an audit entry. `user=None` means the system itself (e.g. the billing tick)."""
    ts = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
    return db.execute(
        "INSERT INTO audit_logs(timestamp, user_id, user_name, action, details) VALUES(?,?,?,?,?)",
        (ts, user.id if user else None, user.name if user else "System", action.value, details),
    )


def recent(limit: int = 100, action: LogActionType | None = None) -> list[AuditLog]:
    sql = "SELECT * FROM audit_logs"
    params: tuple = ()
    if action is not None:
        sql += " WHERE action = ?"
        params = (action.value,)
    sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
    rows = db.fetch_all(sql, params + (limit,))
    return [
        AuditLog(r["id"], datetime.fromisoformat(r["timestamp"]), r["user_id"], r["user_name"],
                 LogActionType(r["action"]), r["details"])
        for r in rows
    ]
