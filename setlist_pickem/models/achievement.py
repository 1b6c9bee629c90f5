"""Achievement catalog and per-user awards"""

from datetime import datetime, timezone

from setlist_pickem import db


class Achievement(db.Model):
    """Static catalog entry, upserted by slug"""

    __tablename__ = "achievements"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(300))
    icon = db.Column(db.String(50))
    category = db.Column(db.String(30), nullable=False)  # SPECIAL, MILESTONE, ...

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    awards = db.relationship(
        "UserAchievement",
        backref="achievement",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Achievement {self.slug}>"

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
        }


class UserAchievement(db.Model):
    """One row per (user, achievement); re-earning is a no-op"""

    __tablename__ = "user_achievements"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    achievement_id = db.Column(
        db.Integer, db.ForeignKey("achievements.id"), nullable=False
    )

    earned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    achievement_metadata = db.Column(db.JSON, nullable=True)

    # What produced the award, so admin resets can undo it
    source_show_id = db.Column(db.Integer, db.ForeignKey("shows.id"), nullable=True)
    source_tour_id = db.Column(db.Integer, db.ForeignKey("tours.id"), nullable=True)

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "achievement_id", name="unique_user_achievement"
        ),
        db.Index("idx_user_achievement_user", "user_id"),
        db.Index("idx_user_achievement_show", "source_show_id"),
        db.Index("idx_user_achievement_tour", "source_tour_id"),
    )

    def __repr__(self):
        return f"<UserAchievement user_id={self.user_id} achievement_id={self.achievement_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "achievement": self.achievement.to_dict() if self.achievement else None,
            "earned_at": self.earned_at.isoformat() if self.earned_at else None,
            "metadata": self.achievement_metadata or {},
            "source_show_id": self.source_show_id,
            "source_tour_id": self.source_tour_id,
        }
