import logging

from sqlalchemy.exc import SQLAlchemyError

from setlist_pickem import db
from setlist_pickem.models import Show, Song, Tour
from setlist_pickem.utils.exceptions import SetlistFeedError
from setlist_pickem.utils.setlist_client import slugify
from setlist_pickem.utils.timezone_utils import normalize_show_date, timezone_for_region

logger = logging.getLogger(__name__)

UNNAMED_TOUR = "Not Part of a Tour"


class DataSync:
    """Upserts the tour schedule and song catalog from the setlist feed"""

    def __init__(self, setlist_client, lock_resolver):
        self.client = setlist_client
        self.resolver = lock_resolver

    def sync_tours(self, year):
        """
        Sync every tour and show the feed lists for a year.

        Returns:
            (success, message) tuple
        """
        try:
            logger.info(f"Starting schedule sync for {year}")
            feed_shows = self.client.get_shows_by_year(year)

            tours = self._group_by_tour(feed_shows)
            show_count = 0
            for tour_key, (tour_name, rows) in tours.items():
                rows.sort(key=lambda row: row["showdate"])
                tour = self._upsert_tour(tour_key, tour_name, rows)
                for row in rows:
                    self._upsert_show(tour, row)
                    show_count += 1

            db.session.commit()
            logger.info(f"Synced {year} schedule: {len(tours)} tours, {show_count} shows")
            return True, f"Synced {len(tours)} tours and {show_count} shows"

        except (SetlistFeedError, SQLAlchemyError, KeyError, ValueError) as e:
            db.session.rollback()
            logger.error(f"Error syncing {year} schedule: {e}")
            return False, str(e)

    def _group_by_tour(self, feed_shows):
        tours = {}
        for row in feed_shows:
            if not row.get("showdate") or not row.get("venue"):
                logger.warning(f"Skipping feed show without date or venue: {row.get('showid')}")
                continue
            tour_key = str(row.get("tourid") or "none")
            name = row.get("tour_name") or row.get("tourname") or UNNAMED_TOUR
            tours.setdefault(tour_key, (name, []))[1].append(row)
        return tours

    def _upsert_tour(self, tour_key, tour_name, rows):
        tour = Tour.query.filter_by(external_id=tour_key).first()
        if not tour:
            tour = Tour(external_id=tour_key)
            db.session.add(tour)
            logger.info(f"Created tour {tour_name}")

        # Status is owned by the tour state machine, never by sync
        tour.name = tour_name
        tour.start_date = normalize_show_date(rows[0]["showdate"])
        tour.end_date = normalize_show_date(rows[-1]["showdate"])
        return tour

    def _upsert_show(self, tour, row):
        show_date = normalize_show_date(row["showdate"])
        external_id = str(row["showid"]) if row.get("showid") is not None else None

        show = None
        if external_id:
            show = Show.query.filter_by(external_id=external_id).first()
        if not show:
            show = Show.query.filter_by(show_date=show_date, venue=row["venue"]).first()
        if not show:
            show = Show(show_date=show_date, venue=row["venue"])
            db.session.add(show)

        show.tour = tour
        show.external_id = external_id or show.external_id
        show.show_date = show_date
        show.venue = row["venue"]
        show.city = row.get("city") or show.city
        show.state = row.get("state") or show.state
        show.country = row.get("country") or show.country

        if not show.timezone:
            show.timezone = timezone_for_region(show.state) or timezone_for_region(show.country)

        show.set_lock_time(self.resolver.try_lock_instant(show.show_date, show.timezone, show.state))
        return show

    def sync_songs(self):
        """
        Upsert the song catalog by slug.

        Returns:
            (success, message) tuple
        """
        try:
            rows = self.client.get_all_songs()
            created = updated = 0

            for row in rows:
                name = (row.get("song") or "").strip()
                if not name:
                    continue
                slug = (row.get("slug") or slugify(name)).lower()

                song = Song.get_by_slug(slug)
                if song:
                    updated += 1
                else:
                    song = Song(slug=slug)
                    db.session.add(song)
                    created += 1

                song.name = name
                song.artist = row.get("artist") or song.artist
                song.times_played = int(row.get("times_played") or 0)
                song.gap = int(row["gap"]) if row.get("gap") not in (None, "") else None
                song.last_played = _parse_feed_date(row.get("last_played"))

            db.session.commit()
            logger.info(f"Song catalog synced: {created} created, {updated} updated")
            return True, f"Synced {created + updated} songs ({created} new)"

        except (SetlistFeedError, SQLAlchemyError, ValueError) as e:
            db.session.rollback()
            logger.error(f"Error syncing song catalog: {e}")
            return False, str(e)


def _parse_feed_date(value):
    if not value:
        return None
    try:
        return normalize_show_date(value)
    except ValueError:
        return None
