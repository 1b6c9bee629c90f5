from datetime import datetime, timezone

from setlist_pickem import db


class Song(db.Model):
    __tablename__ = "songs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), nullable=False, unique=True, index=True)
    artist = db.Column(db.String(200))

    # Play statistics, maintained by the catalog sync
    times_played = db.Column(db.Integer, default=0)
    gap = db.Column(db.Integer)
    last_played = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<Song {self.slug}>"

    @staticmethod
    def get_by_slug(slug):
        return Song.query.filter_by(slug=slug).first()

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "artist": self.artist,
            "times_played": self.times_played,
            "gap": self.gap,
            "last_played": self.last_played.isoformat() if self.last_played else None,
        }
