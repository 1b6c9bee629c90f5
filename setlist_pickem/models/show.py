from datetime import datetime, timezone

from setlist_pickem import db


class Show(db.Model):
    __tablename__ = "shows"

    id = db.Column(db.Integer, primary_key=True)
    tour_id = db.Column(db.Integer, db.ForeignKey("tours.id"), nullable=True)

    # Calendar day of the show, no time component
    show_date = db.Column(db.Date, nullable=False)

    # Venue
    venue = db.Column(db.String(200), nullable=False)
    city = db.Column(db.String(100))
    state = db.Column(db.String(50))  # state / province / region code
    country = db.Column(db.String(100))
    timezone = db.Column(db.String(64))  # IANA identifier

    # Feed identifier
    external_id = db.Column(db.String(50), unique=True, index=True)

    # Scoring state
    is_complete = db.Column(db.Boolean, default=False, nullable=False)
    setlist_json = db.Column(db.JSON, nullable=True)
    fetched_at = db.Column(db.DateTime)
    last_scored_at = db.Column(db.DateTime)

    # Derived from show_date + timezone, stored as naive UTC
    lock_time = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    submissions = db.relationship(
        "Submission", backref="show", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.UniqueConstraint("show_date", "venue", name="unique_show_date_venue"),
        db.Index("idx_show_date", "show_date"),
        db.Index("idx_show_tour", "tour_id"),
        db.Index("idx_show_complete", "is_complete"),
    )

    def __repr__(self):
        return f"<Show {self.show_date} {self.venue}>"

    @property
    def show_date_str(self):
        return self.show_date.isoformat() if self.show_date else None

    @property
    def lock_time_utc(self):
        """Cached lock time as an aware UTC datetime"""
        if self.lock_time is None:
            return None
        if self.lock_time.tzinfo is None:
            return self.lock_time.replace(tzinfo=timezone.utc)
        return self.lock_time.astimezone(timezone.utc)

    def set_lock_time(self, lock_instant):
        """Store an aware lock instant as naive UTC"""
        if lock_instant is None:
            self.lock_time = None
            return
        self.lock_time = lock_instant.astimezone(timezone.utc).replace(tzinfo=None)

    def clear_scoring_state(self):
        """Drop everything the scoring pass derived for this show"""
        self.setlist_json = None
        self.fetched_at = None
        self.is_complete = False
        self.last_scored_at = None

    @property
    def location(self):
        parts = [part for part in (self.city, self.state) if part]
        return ", ".join(parts)

    def to_dict(self):
        return {
            "id": self.id,
            "tour_id": self.tour_id,
            "show_date": self.show_date_str,
            "venue": self.venue,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "timezone": self.timezone,
            "is_complete": self.is_complete,
            "lock_time": (
                self.lock_time_utc.isoformat() if self.lock_time_utc else None
            ),
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "last_scored_at": (
                self.last_scored_at.isoformat() if self.last_scored_at else None
            ),
        }
