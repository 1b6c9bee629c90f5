import enum
from datetime import datetime, timezone

from setlist_pickem import db


class TourStatus(str, enum.Enum):
    FUTURE = "FUTURE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"


class Tour(db.Model):
    __tablename__ = "tours"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    # Feed identifier, used to upsert on schedule re-sync
    external_id = db.Column(db.String(50), unique=True, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date)

    status = db.Column(
        db.String(20), nullable=False, default=TourStatus.FUTURE.value
    )

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    shows = db.relationship(
        "Show",
        backref="tour",
        lazy="dynamic",
        order_by="Show.show_date",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.Index("idx_tour_status", "status"),
        db.Index("idx_tour_dates", "start_date", "end_date"),
    )

    def __repr__(self):
        return f"<Tour {self.name} ({self.status})>"

    @property
    def accepts_picks(self):
        """Picks are only accepted while the tour is ACTIVE"""
        return self.status == TourStatus.ACTIVE.value

    @property
    def is_on_leaderboard(self):
        """ACTIVE tours show live standings, COMPLETED tours show the podium"""
        return self.status in (TourStatus.ACTIVE.value, TourStatus.COMPLETED.value)

    @property
    def is_archived(self):
        return self.status == TourStatus.CLOSED.value

    @property
    def is_final(self):
        """Standings no longer move once the tour is completed"""
        return self.status in (TourStatus.COMPLETED.value, TourStatus.CLOSED.value)

    @staticmethod
    def get_active_tours():
        return (
            Tour.query.filter_by(status=TourStatus.ACTIVE.value)
            .order_by(Tour.start_date)
            .all()
        )

    @staticmethod
    def find_by_name(name):
        """Case-insensitive partial match on tour name, newest first"""
        return (
            Tour.query.filter(Tour.name.ilike(f"%{name}%"))
            .order_by(Tour.start_date.desc())
            .first()
        )

    def to_dict(self, include_shows=False):
        data = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "accepts_picks": self.accepts_picks,
        }

        if include_shows:
            data["shows"] = [show.to_dict() for show in self.shows.all()]

        return data
