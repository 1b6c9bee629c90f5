from datetime import datetime, timezone

from setlist_pickem import db


class Submission(db.Model):
    __tablename__ = "submissions"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    show_id = db.Column(db.Integer, db.ForeignKey("shows.id"), nullable=False)

    # Scoring results
    total_points = db.Column(db.Integer, default=0, nullable=False)
    is_scored = db.Column(db.Boolean, default=False, nullable=False)
    last_song_count = db.Column(db.Integer, default=0, nullable=False)
    scored_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick",
        backref="submission",
        lazy="select",
        order_by="Pick.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "show_id", name="unique_user_show_submission"),
        db.Index("idx_submission_show", "show_id"),
        db.Index("idx_submission_scored", "show_id", "is_scored"),
    )

    def __repr__(self):
        return f"<Submission user_id={self.user_id} show_id={self.show_id} points={self.total_points}>"

    def needs_rescore(self, song_count, is_final):
        """False when neither the song count nor finality moved since last pass"""
        return self.last_song_count != song_count or bool(self.is_scored) != is_final

    def clear_scoring_state(self):
        self.total_points = 0
        self.is_scored = False
        self.last_song_count = 0
        self.scored_at = None
        for pick in self.picks:
            pick.clear_outcome()

    def to_dict(self, include_picks=False):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "show_id": self.show_id,
            "total_points": self.total_points,
            "is_scored": self.is_scored,
            "last_song_count": self.last_song_count,
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }

        if include_picks:
            data["picks"] = [pick.to_dict() for pick in self.picks]

        return data
