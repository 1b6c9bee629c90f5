import enum
from datetime import datetime, timezone

from setlist_pickem import db


class PickCategory(str, enum.Enum):
    """Closed set of pick slots; each has its own match rule in scoring"""

    OPENER = "OPENER"
    ENCORE = "ENCORE"
    GENERAL = "GENERAL"

    @property
    def label(self):
        return self.value.title()


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    submission_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id"), nullable=False
    )
    song_id = db.Column(db.Integer, db.ForeignKey("songs.id"), nullable=False)
    pick_type = db.Column(
        db.String(20), nullable=False, default=PickCategory.GENERAL.value
    )

    # Results: None = not yet scored, False = not played, True = played
    was_played = db.Column(db.Boolean, nullable=True)
    points_earned = db.Column(db.Integer, default=0, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    song = db.relationship("Song")

    __table_args__ = (
        db.UniqueConstraint("submission_id", "song_id", name="unique_submission_song"),
        db.Index("idx_pick_submission", "submission_id"),
    )

    def __repr__(self):
        return f"<Pick submission_id={self.submission_id} {self.pick_type} song={self.song.slug if self.song else 'TBD'}>"

    @property
    def category(self):
        return PickCategory(self.pick_type)

    @property
    def song_slug(self):
        return self.song.slug if self.song else None

    @property
    def outcome(self):
        if self.was_played is None:
            return "unscored"
        return "played" if self.was_played else "not_played"

    def apply_outcome(self, was_played, points_earned):
        """Upsert-to-latest: overwrite, never accumulate"""
        self.was_played = was_played
        self.points_earned = points_earned

    def clear_outcome(self):
        self.was_played = None
        self.points_earned = 0

    def to_dict(self):
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "pick_type": self.pick_type,
            "song": self.song.to_dict() if self.song else None,
            "was_played": self.was_played,
            "outcome": self.outcome,
            "points_earned": self.points_earned,
        }
