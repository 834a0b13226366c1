"""
SOP store - persistence for rule collections, resolved conflicts and tags
"""
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sop_engine.db.connection import get_db_connection, init_database
from sop_engine.errors import SOPNotFoundError
from sop_engine.rules.collection import RuleCollection, new_sop_id
from sop_engine.rules.models import Rule, now_iso


class SOPStore:
    """SQLite-backed store; conflicts are derived and never written."""

    def __init__(self, db_path: Union[str, Path] = None):
        self.db_path = str(db_path) if db_path else None
        self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = get_db_connection(self.db_path)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def init_schema(self):
        init_database(self.conn)

    # === SOPs ===

    def create_sop(self, name: str, client_prefix: str) -> RuleCollection:
        collection = RuleCollection(sop_id=new_sop_id(), name=name, client_prefix=client_prefix)
        with self.conn:
            self.conn.execute(
                "INSERT INTO sops (sop_id, name, client_prefix, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (collection.sop_id, name, client_prefix, collection.created_at, collection.updated_at),
            )
        return collection

    def list_sops(self) -> List[Dict[str, Any]]:
        cur = self.conn.execute("""
            SELECT s.*, COUNT(r.rule_id) AS rule_count
            FROM sops s LEFT JOIN rules r ON r.sop_id = s.sop_id
            GROUP BY s.sop_id
            ORDER BY s.created_at
        """)
        return [dict(row) for row in cur.fetchall()]

    def get_sop(self, sop_id: str) -> Optional[Dict[str, Any]]:
        cur = self.conn.execute("SELECT * FROM sops WHERE sop_id = ?", (sop_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    def delete_sop(self, sop_id: str):
        if self.get_sop(sop_id) is None:
            raise SOPNotFoundError(sop_id)
        with self.conn:
            self.conn.execute("DELETE FROM rules WHERE sop_id = ?", (sop_id,))
            self.conn.execute("DELETE FROM resolved_conflicts WHERE sop_id = ?", (sop_id,))
            self.conn.execute("DELETE FROM sops WHERE sop_id = ?", (sop_id,))

    # === Collections ===

    def load_collection(self, sop_id: str) -> RuleCollection:
        sop = self.get_sop(sop_id)
        if sop is None:
            raise SOPNotFoundError(sop_id)

        cur = self.conn.execute(
            "SELECT data FROM rules WHERE sop_id = ? ORDER BY position", (sop_id,)
        )
        rules = [Rule.from_dict(json.loads(row["data"])) for row in cur.fetchall()]

        cur = self.conn.execute(
            "SELECT conflict_id FROM resolved_conflicts WHERE sop_id = ?", (sop_id,)
        )
        resolved = {row["conflict_id"] for row in cur.fetchall()}

        return RuleCollection(
            sop_id=sop_id,
            name=sop["name"],
            client_prefix=sop["client_prefix"],
            rules=rules,
            resolved_conflict_ids=resolved,
            created_at=sop["created_at"],
            updated_at=sop["updated_at"],
        )

    def save_collection(self, collection: RuleCollection):
        """Replace the stored rules and add any new resolved ids, in one transaction."""
        if self.get_sop(collection.sop_id) is None:
            raise SOPNotFoundError(collection.sop_id)

        collection.updated_at = now_iso()
        with self.conn:
            self.conn.execute(
                "UPDATE sops SET name = ?, client_prefix = ?, updated_at = ? WHERE sop_id = ?",
                (collection.name, collection.client_prefix, collection.updated_at, collection.sop_id),
            )
            self.conn.execute("DELETE FROM rules WHERE sop_id = ?", (collection.sop_id,))
            self.conn.executemany(
                "INSERT INTO rules (sop_id, rule_id, position, status, data) VALUES (?, ?, ?, ?, ?)",
                [
                    (collection.sop_id, rule.rule_id, position, rule.status.value,
                     json.dumps(rule.to_dict(include_conflicts=False)))
                    for position, rule in enumerate(collection.rules)
                ],
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO resolved_conflicts (sop_id, conflict_id, resolved_at) "
                "VALUES (?, ?, ?)",
                [(collection.sop_id, cid, now_iso()) for cid in sorted(collection.resolved_conflict_ids)],
            )

    def record_resolution(self, sop_id: str, conflict_id: str, action: str, resolved_at: str):
        with self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO resolved_conflicts (sop_id, conflict_id, action, resolved_at) "
                "VALUES (?, ?, ?, ?)",
                (sop_id, conflict_id, action, resolved_at),
            )

    def resolved_conflicts(self, sop_id: str) -> List[Dict[str, Any]]:
        cur = self.conn.execute(
            "SELECT * FROM resolved_conflicts WHERE sop_id = ? ORDER BY resolved_at", (sop_id,)
        )
        return [dict(row) for row in cur.fetchall()]

    # === Tags ===

    def load_tags(self) -> List[Dict[str, Any]]:
        cur = self.conn.execute("SELECT * FROM tags ORDER BY rowid")
        tags = []
        for row in cur.fetchall():
            data = dict(row)
            data["expands_to"] = json.loads(data["expands_to"]) if data["expands_to"] else []
            tags.append(data)
        return tags

    def save_tag(self, entry):
        """Upsert a TagEntry."""
        with self.conn:
            self.conn.execute("""
                INSERT INTO tags (tag_id, tag, type, description, status, usage_count, created_by,
                                  origin_rule_id, origin_sop_id, expands_to, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tag_id) DO UPDATE SET
                    description = excluded.description,
                    status = excluded.status,
                    usage_count = excluded.usage_count,
                    expands_to = excluded.expands_to,
                    updated_at = excluded.updated_at
            """, (
                entry.tag_id, entry.tag, entry.type.value, entry.description, entry.status.value,
                entry.usage_count, entry.created_by, entry.origin_rule_id, entry.origin_sop_id,
                json.dumps(entry.expands_to), entry.created_at, entry.updated_at,
            ))
