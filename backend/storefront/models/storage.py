from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class KvEntry(db.Model):
    """
    One key of the device key-value medium.

    Values are opaque text (JSON written by the stores); the table enforces
    no schema beyond key uniqueness.
    """
    __tablename__ = "kv_entries"

    key = db.Column(db.String(512), primary_key=True)
    value = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "key": self.key,
            "size": len(self.value or ""),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
