from __future__ import annotations

from ..extensions import db


class SequenceCounter(db.Model):
    """
    Durable per-period counter backing order and purchase numbers.

    One row per (domain, period_key). period_key is "YYYY-MM" for orders and
    "YYYYMMDD" for purchases. last_sequence is the last value handed out; it
    only moves forward except through an explicit administrative reset.

    Increments are done with UPDATE ... SET last_sequence = last_sequence + 1,
    which takes the row lock for the rest of the transaction.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("domain", "period_key", name="uq_sequence_counters_domain_period"),
        db.CheckConstraint("last_sequence >= 0", name="ck_sequence_counters_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    domain = db.Column(db.String(16), nullable=False)
    period_key = db.Column(db.String(16), nullable=False)
    last_sequence = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.domain}:{self.period_key}={self.last_sequence}>"

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "period_key": self.period_key,
            "last_sequence": self.last_sequence,
        }
