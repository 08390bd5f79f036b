"""
Notification & Audit Sink - SQLite-backed reference implementation.

Stores in-app notifications and audit entries in SQLite and sends email
over SMTP when configured. Email is best-effort: with incomplete SMTP
settings it is skipped and logged, never raised.
"""

import json
import smtplib
import sqlite3
import threading
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional
import logging

from core.config import Settings
from core.errors import NotificationError
from core.interfaces import NotificationSink

log = logging.getLogger(__name__)


class SQLiteNotificationSink(NotificationSink):
    """
    Notifications, audit log and user directory in one SQLite database.

    Usage:
        sink = SQLiteNotificationSink("parcels.db", settings)
        sink.register_user("admin-1", "admin@example.com", is_admin=True)
        sink.notify_admins("Listing removed", "...", link="/admin/overlap-review")
    """

    def __init__(self, db_path: str, settings: Optional[Settings] = None):
        self.db_path = db_path
        self.settings = settings or Settings()
        self._lock = threading.RLock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        email TEXT,
                        is_admin INTEGER NOT NULL DEFAULT 0
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        link TEXT,
                        is_read INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS audit_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        action_type TEXT NOT NULL,
                        actor_id TEXT,
                        details TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)")
                conn.commit()
            finally:
                conn.close()

    def _execute(self, sql: str, params: tuple):
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(sql, params)
                conn.commit()
            except sqlite3.Error as e:
                raise NotificationError(str(e)) from e
            finally:
                conn.close()

    # ═══════════════════════════════════════════════════════════════════════
    # USERS
    # ═══════════════════════════════════════════════════════════════════════
    def register_user(self, user_id: str, email: Optional[str] = None, is_admin: bool = False):
        self._execute(
            "INSERT OR REPLACE INTO users (id, email, is_admin) VALUES (?, ?, ?)",
            (user_id, email, int(is_admin))
        )

    def get_admin_ids(self) -> List[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT id FROM users WHERE is_admin = 1 ORDER BY id").fetchall()
            return [row["id"] for row in rows]
        finally:
            conn.close()

    def get_email(self, user_id: str) -> Optional[str]:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT email FROM users WHERE id = ?", (user_id,)).fetchone()
            return row["email"] if row else None
        finally:
            conn.close()

    # ═══════════════════════════════════════════════════════════════════════
    # SINK CONTRACT
    # ═══════════════════════════════════════════════════════════════════════
    def notify_user(self, user_id: str, title: str, message: str, link: Optional[str] = None) -> None:
        self._execute(
            """
            INSERT INTO notifications (user_id, title, message, link, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, title, message, link, datetime.now().isoformat())
        )
        log.info(f"Notified user {user_id}: {title}")

    def notify_admins(self, title: str, message: str, link: Optional[str] = None) -> int:
        admin_ids = self.get_admin_ids()
        for admin_id in admin_ids:
            self.notify_user(admin_id, title, message, link)
        if not admin_ids:
            log.warning("No administrator accounts to notify")
        return len(admin_ids)

    def append_audit_log(self, action_type: str, actor_id: Optional[str], details: Dict[str, Any]) -> None:
        self._execute(
            """
            INSERT INTO audit_logs (action_type, actor_id, details, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (action_type, actor_id, json.dumps(details, sort_keys=True), datetime.now().isoformat())
        )
        log.info(f"Audit: {action_type} by {actor_id or 'system'}")

    def send_email(self, to: str, subject: str, html: str) -> bool:
        """
        Send an HTML email to an address, or to a registered user's address.

        Raises:
            NotificationError: the mail server rejected or was unreachable
        """
        address = to if "@" in to else self.get_email(to)
        if not address:
            log.warning(f"No email address for {to}, skipping email")
            return False

        s = self.settings
        if not s.smtp_configured:
            log.warning("SMTP configuration is incomplete, skipping email")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = s.smtp_from
        msg["To"] = address
        msg.attach(MIMEText("Please view this email in an HTML-compatible email client.", "plain"))
        msg.attach(MIMEText(html, "html"))

        try:
            if s.smtp_port == 465:
                server = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=15)
            else:
                server = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=15)
                server.starttls()
            with server:
                server.login(s.smtp_user, s.smtp_pass)
                server.sendmail(s.smtp_from, [address], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email to {address} failed: {e}") from e

        log.info(f"Email sent to {address}: {subject}")
        return True

    # ═══════════════════════════════════════════════════════════════════════
    # READ SIDE
    # ═══════════════════════════════════════════════════════════════════════
    def get_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY id",
                (user_id,)
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_audit_log(self, action_type: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            if action_type:
                rows = conn.execute(
                    "SELECT * FROM audit_logs WHERE action_type = ? ORDER BY id",
                    (action_type,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM audit_logs ORDER BY id").fetchall()
            entries = []
            for row in rows:
                entry = dict(row)
                entry["details"] = json.loads(entry["details"])
                entries.append(entry)
            return entries
        finally:
            conn.close()
