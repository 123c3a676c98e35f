from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Setting(db.Model):
    """
    Restaurant-wide key/value setting.

    value holds JSON text; settings_service decodes and validates it per key.
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)

    updated_by = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
