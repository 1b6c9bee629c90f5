"""
Setlist feed adapter (phish.net v5 API) and the parsed setlist model.

The feed returns one row per song performed. While a show is in progress the
list is partial and grows between fetches.
"""

import logging
import re
import time
from dataclasses import dataclass
from functools import wraps

import requests

from setlist_pickem.utils.exceptions import SetlistFeedError
from setlist_pickem.utils.timezone_utils import format_show_date

logger = logging.getLogger(__name__)

DEFAULT_ENCORE_SET_LABELS = ("e", "e2", "e3")


def slugify(name):
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass(frozen=True)
class SetlistSong:
    slug: str
    name: str
    set_label: str
    position: int


class SetSongList:
    """Ordered songs of one show, partitioned into sets and an encore segment"""

    def __init__(self, songs, show_date=None, encore_labels=DEFAULT_ENCORE_SET_LABELS, meta=None):
        self.encore_labels = tuple(label.lower() for label in encore_labels)
        self.show_date = show_date
        self.meta = meta or {}
        self.songs = sorted(songs, key=self._sort_key)

    def _set_order(self, set_label):
        label = set_label.lower()
        if label in self.encore_labels:
            return 100 + self.encore_labels.index(label)
        if label.isdigit():
            return int(label)
        return 1000

    def _sort_key(self, song):
        return (self._set_order(song.set_label), song.position)

    @classmethod
    def from_feed(cls, payload, show_date=None, encore_labels=DEFAULT_ENCORE_SET_LABELS):
        """
        Build from feed rows, or from a cached payload produced by to_json().

        Raises:
            SetlistFeedError: rows are missing required fields
        """
        meta = {}
        rows = payload
        if isinstance(payload, dict):
            rows = payload.get("songs") or []
            meta = {
                key: payload.get(key)
                for key in ("showid", "venue", "city", "state", "country", "tour_name")
                if payload.get(key) is not None
            }
            show_date = show_date or payload.get("showdate")

        if not isinstance(rows, list):
            raise SetlistFeedError(f"Unexpected setlist payload type: {type(rows).__name__}")

        songs = []
        for index, row in enumerate(rows):
            try:
                name = str(row["song"]).strip()
                slug = str(row.get("slug") or slugify(name)).strip().lower()
                set_label = str(row.get("set") or "").strip().lower()
                position = int(row.get("position") or index + 1)
            except (KeyError, TypeError, ValueError) as e:
                raise SetlistFeedError(f"Malformed setlist row {index}: {e}") from e

            if not set_label:
                raise SetlistFeedError(f"Setlist row {index} ({name}) has no set label")

            songs.append(SetlistSong(slug=slug, name=name, set_label=set_label, position=position))

        if rows and not meta and isinstance(rows[0], dict):
            first = rows[0]
            meta = {
                "showid": first.get("showid"),
                "venue": first.get("venue"),
                "city": first.get("city"),
                "state": first.get("state"),
                "country": first.get("country"),
                "tour_name": first.get("tourname") or first.get("tour_name"),
            }
            meta = {key: value for key, value in meta.items() if value is not None}

        return cls(songs, show_date=show_date, encore_labels=encore_labels, meta=meta)

    @property
    def song_count(self):
        return len(self.songs)

    @property
    def is_empty(self):
        return not self.songs

    @property
    def opener_slug(self):
        """First song of set 1, or None before the show starts"""
        for song in self.songs:
            if song.set_label == "1":
                return song.slug
        return None

    @property
    def encore_slugs(self):
        return [song.slug for song in self.songs if song.set_label in self.encore_labels]

    @property
    def all_slugs(self):
        return [song.slug for song in self.songs]

    @property
    def has_encore(self):
        return any(song.set_label in self.encore_labels for song in self.songs)

    def contains(self, slug):
        return slug in set(self.all_slugs)

    def to_json(self):
        """Payload cached on the show row"""
        data = dict(self.meta)
        data["showdate"] = self.show_date
        data["songs"] = [
            {
                "song": song.name,
                "slug": song.slug,
                "set": song.set_label,
                "position": song.position,
            }
            for song in self.songs
        ]
        return data

    def to_summary(self):
        by_slug = {song.slug: song.name for song in self.songs}
        opener = self.opener_slug
        return {
            "opener": by_slug.get(opener) if opener else None,
            "encore_songs": [by_slug[slug] for slug in self.encore_slugs],
            "all_songs": [song.name for song in self.songs],
            "song_count": self.song_count,
            "has_encore": self.has_encore,
        }


def feed_retry(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Retry feed requests on timeouts, connection errors, 429 and 5xx responses
    with exponential backoff. Other HTTP errors are raised immediately.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(self, *args, **kwargs)

                except requests.exceptions.HTTPError as e:
                    status = e.response.status_code if e.response is not None else 0
                    if status != 429 and status < 500:
                        raise
                    if attempt == max_retries - 1:
                        raise

                    delay = base_delay * (backoff_factor**attempt)
                    if status == 429 and e.response is not None:
                        retry_after = e.response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            delay = int(retry_after)
                    logger.warning(
                        f"Feed returned {status}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay)

                except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                    if attempt == max_retries - 1:
                        raise
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay)

            raise SetlistFeedError(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


class SetlistClient:
    """Fetches setlists, schedules and the song catalog from phish.net"""

    def __init__(
        self,
        api_base_url="https://api.phish.net/v5",
        api_key=None,
        encore_labels=DEFAULT_ENCORE_SET_LABELS,
        artist_id=1,
        min_request_interval=0.5,
        session=None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key
        self.encore_labels = tuple(encore_labels)
        self.artist_id = artist_id
        self.min_request_interval = min_request_interval
        self.last_request_time = 0
        self.request_count = 0

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "Setlist-Pickem/1.0"})

    @classmethod
    def from_config(cls, app_config, **kwargs):
        return cls(
            api_base_url=app_config.get("PHISHNET_API_BASE_URL", "https://api.phish.net/v5"),
            api_key=app_config.get("PHISHNET_API_KEY"),
            encore_labels=app_config.get("ENCORE_SET_LABELS", DEFAULT_ENCORE_SET_LABELS),
            artist_id=app_config.get("PHISHNET_ARTIST_ID", 1),
            **kwargs,
        )

    def _enforce_rate_limit(self):
        """Keep a minimum interval between requests"""
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_count += 1

    @feed_retry(max_retries=3, base_delay=2.0)
    def _make_api_request(self, url):
        """Make API request with rate limiting and retry logic"""
        self._enforce_rate_limit()
        logger.debug(f"Feed request #{self.request_count}: {url}")

        response = self.session.get(url, params={"apikey": self.api_key}, timeout=30)
        response.raise_for_status()
        return response

    def _fetch(self, endpoint):
        """
        GET an endpoint and unwrap the {error, error_message, data} envelope.

        Raises:
            SetlistFeedError: missing key, transport failure, bad JSON or API error
        """
        if not self.api_key:
            raise SetlistFeedError("PHISHNET_API_KEY is not configured")

        url = f"{self.api_base_url}{endpoint}"
        try:
            response = self._make_api_request(url)
        except requests.exceptions.RequestException as e:
            # Never echo the URL, it carries the API key
            raise SetlistFeedError(f"Feed request failed for {endpoint}: {type(e).__name__}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise SetlistFeedError(f"Feed returned invalid JSON for {endpoint}") from e

        if not isinstance(payload, dict):
            raise SetlistFeedError(f"Unexpected feed envelope for {endpoint}")

        if payload.get("error"):
            raise SetlistFeedError(
                f"Feed error for {endpoint}: {payload.get('error_message') or 'unknown'}"
            )

        return payload.get("data") or []

    def fetch_setlist(self, show_date):
        """
        Current setlist for a date, or None when nothing has been played yet.

        Raises:
            SetlistFeedError: feed unreachable or malformed, or bad date
        """
        try:
            date_str = format_show_date(show_date)
        except ValueError as e:
            raise SetlistFeedError(str(e)) from e

        rows = self._fetch(f"/setlists/showdate/{date_str}.json")
        if not rows:
            return None

        if self.artist_id is not None:
            artist_rows = [
                row for row in rows
                if row.get("artistid") is None or int(row.get("artistid")) == self.artist_id
            ]
            rows = artist_rows

        if not rows:
            return None

        return SetSongList.from_feed(rows, show_date=date_str, encore_labels=self.encore_labels)

    def get_shows_by_year(self, year):
        shows = self._fetch(f"/shows/showyear/{int(year)}.json")
        if self.artist_id is None:
            return shows
        return [show for show in shows if int(show.get("artistid") or self.artist_id) == self.artist_id]

    def get_all_songs(self):
        return self._fetch("/songs.json")


def get_setlist_client():
    """Client registered on the app, otherwise one built from its configuration"""
    from flask import current_app

    client = current_app.extensions.get("setlist_client")
    if client is not None:
        return client
    return SetlistClient.from_config(current_app.config)
