"""
auth/audit.py -- Append-only auth event log (login, logout, failed login).

One file per UTC day, one JSON object per line:

    <auth_log_dir>/auth_2026-10-17.log
    {"timestamp": "...", "username": "alice", "action": "login", "ipAddress": "10.0.0.4", ...}

The log is an audit artifact for operators; the application never reads it.
Writes are serialized with a lock because sync route handlers run on
Starlette's worker threads. A failed write is logged and dropped: losing an
audit line must never turn a successful login into a 500.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from core.config import get_settings

logger = logging.getLogger("assetmis.auth.audit")

# Actions written by the API layer.
LOGIN = "login"
LOGIN_MFA_SETUP_REQUIRED = "login_mfa_setup_required"
LOGIN_PASSWORD_CHANGE_REQUIRED = "login_password_change_required"
FAILED_LOGIN = "failed_login"
LOGOUT = "logout"
AUTO_LOGOUT = "auto-logout"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthEventLog:
    """Writes auth events as JSON lines into a per-day file under log_dir."""

    def __init__(self, log_dir: str | Path | None = None, clock: Callable[[], datetime] = _utc_now) -> None:
        self.log_dir = Path(log_dir if log_dir is not None else get_settings().auth_log_dir)
        self._clock = clock
        self._lock = threading.Lock()

    def path_for(self, when: datetime) -> Path:
        return self.log_dir / f"auth_{when.strftime('%Y-%m-%d')}.log"

    def record(
        self,
        username: str,
        action: str,
        ip_address: str,
        user_agent: str | None = None,
        **extra: str,
    ) -> dict:
        """Append one event and return the entry that was written (or attempted)."""
        now = self._clock()
        entry: dict = {
            "timestamp": now.isoformat(),
            "username": username,
            "action": action,
            "ipAddress": ip_address,
        }
        if user_agent is not None:
            entry["userAgent"] = user_agent
        if action in (LOGIN, LOGIN_MFA_SETUP_REQUIRED, LOGIN_PASSWORD_CHANGE_REQUIRED):
            entry["loginTime"] = now.strftime("%m/%d/%Y, %I:%M:%S %p")
        elif action in (LOGOUT, AUTO_LOGOUT):
            entry["logoutTime"] = now.strftime("%m/%d/%Y, %I:%M:%S %p")
        entry.update(extra)

        line = json.dumps(entry) + "\n"
        try:
            with self._lock:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with self.path_for(now).open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except OSError as exc:
            logger.warning("Could not write auth event %s for %s: %s", action, username, exc)
        return entry
