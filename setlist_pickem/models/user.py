from datetime import datetime, timezone

from setlist_pickem import db


class User(db.Model):
    """Player identity; authentication lives in the host application"""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100))

    # Account status
    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)  # Excluded from standings

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    submissions = db.relationship(
        "Submission", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    achievements = db.relationship(
        "UserAchievement", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User {self.username}>"

    @property
    def full_name(self):
        return self.display_name or self.username

    def get_submission_for_show(self, show_id):
        return self.submissions.filter_by(show_id=show_id).first()

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.full_name,
            "is_active": self.is_active,
        }
