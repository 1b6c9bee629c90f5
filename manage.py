#!/usr/bin/env python3
"""
Setlist Pick'em Management CLI

Command-line administration for tours, shows, scoring and data sync.
"""

import logging
import os
from datetime import datetime, timezone

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# Management commands never start the background jobs
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from setlist_pickem import create_app, db  # noqa: E402
from setlist_pickem.models import (  # noqa: E402
    PickCategory,
    Show,
    Submission,
    Tour,
    TourStatus,
    User,
)
from setlist_pickem.services.achievements import get_achievement_evaluator  # noqa: E402
from setlist_pickem.services.pick_submission import get_pick_submission_service  # noqa: E402
from setlist_pickem.services.submission_state import (  # noqa: E402
    get_submission_state_manager,
    run_gated_scoring_pass,
)
from setlist_pickem.services.tour_state import TourStateMachine  # noqa: E402
from setlist_pickem.utils.data_sync import DataSync  # noqa: E402
from setlist_pickem.utils.exceptions import PickemError  # noqa: E402
from setlist_pickem.utils.setlist_client import get_setlist_client  # noqa: E402
from setlist_pickem.utils.timezone_utils import (  # noqa: E402
    format_lock_time,
    get_lock_resolver,
)

app = create_app()

STATUS_ICONS = {
    TourStatus.FUTURE.value: "📅",
    TourStatus.ACTIVE.value: "🟢",
    TourStatus.COMPLETED.value: "🏆",
    TourStatus.CLOSED.value: "📦",
}


@click.group()
def cli():
    """Setlist Pick'em Management CLI"""
    pass


def _find_tour(name, tour_id):
    """Tour by id, or by case-insensitive partial name"""
    if tour_id is not None:
        tour = db.session.get(Tour, tour_id)
        label = f"with ID {tour_id}"
    else:
        tour = Tour.find_by_name(name) if name else None
        label = f'"{name}"'

    if tour is None:
        click.echo(f"❌ Tour {label} not found")
        click.echo("\nAvailable tours:")
        for t in Tour.query.order_by(Tour.start_date.desc()).limit(10):
            click.echo(f"  - {t.name} ({t.status})")
    return tour


def _echo_tour(tour):
    click.echo(f"   Tour ID: {tour.id}")
    click.echo(f"   Start Date: {tour.start_date}")
    click.echo(f"   End Date: {tour.end_date or 'N/A'}")
    click.echo(f"   Total Shows: {tour.shows.count()}")
    click.echo(f"   Current Status: {tour.status}")


def _tour_machine():
    return TourStateMachine(get_achievement_evaluator())


# Tour Management Commands
@cli.group()
def tour():
    """Tour lifecycle commands"""
    pass


@tour.command("list")
@with_appcontext
def list_tours():
    """List all tours"""
    tours = Tour.query.order_by(Tour.start_date.desc()).all()
    if not tours:
        click.echo("No tours found. Run 'sync tours' first.")
        return

    click.echo("Tours:")
    for t in tours:
        icon = STATUS_ICONS.get(t.status, "❔")
        click.echo(
            f"  {icon} [{t.id}] {t.name} ({t.start_date} to {t.end_date or '?'}) "
            f"- {t.status}, {t.shows.count()} shows"
        )


@tour.command()
@click.argument("name", required=False)
@click.option("--tour-id", type=int, help="Select the tour by ID")
@click.option("--force", is_flag=True, help="Reactivate a COMPLETED or CLOSED tour")
@with_appcontext
def activate(name, tour_id, force):
    """Open a tour for picks"""
    t = _find_tour(name, tour_id)
    if not t:
        return

    click.echo(f"\n🎸 Activating tour: {t.name}")
    _echo_tour(t)

    try:
        result = _tour_machine().activate(t, force=force)
    except PickemError as e:
        click.echo(f"\n❌ {e}")
        return

    if not result["changed"]:
        click.echo("\n✅ Tour is already ACTIVE")
        return

    click.echo(f"\n✅ Tour is now ACTIVE (was {result['previous_status']})")
    if result["revoked_achievements"]:
        click.echo(f"   Removed {result['revoked_achievements']} placement achievement(s)")
    if result["first_show"]:
        first = result["first_show"]
        click.echo(f"   First show: {first['show_date']} at {first['venue']}")


@tour.command()
@click.argument("name", required=False)
@click.option("--tour-id", type=int, help="Select the tour by ID")
@with_appcontext
def complete(name, tour_id):
    """Finish a tour and award the podium"""
    t = _find_tour(name, tour_id)
    if not t:
        return

    click.echo(f"\n🎆 Completing tour: {t.name}")
    _echo_tour(t)

    try:
        result = _tour_machine().complete(t)
    except PickemError as e:
        click.echo(f"\n❌ {e}")
        return

    if result["incomplete_shows"]:
        click.echo(
            f"\n⚠️  Warning: {len(result['incomplete_shows'])} show(s) are not yet complete:"
        )
        for show in result["incomplete_shows"]:
            click.echo(f"   - {show['show_date']} at {show['venue']}")

    if not result["standings"]:
        click.echo("\n⚠️  Warning: This tour has NO participants!")
    else:
        click.echo("\n🏆 Final standings:")
        medals = {1: "🥇", 2: "🥈", 3: "🥉"}
        for entry in result["standings"]:
            medal = medals.get(entry["rank"], "  ")
            click.echo(
                f"   {medal} #{entry['rank']} {entry['display_name']} - "
                f"{entry['total_points']} pts ({entry['shows_played']} shows)"
            )

    click.echo(f"\n✅ Tour is COMPLETED, {len(result['awarded'])} placement award(s)")


@tour.command()
@click.argument("name", required=False)
@click.option("--tour-id", type=int, help="Select the tour by ID")
@click.option("--force", is_flag=True, help="Close a tour that was never completed")
@with_appcontext
def close(name, tour_id, force):
    """Archive a completed tour"""
    t = _find_tour(name, tour_id)
    if not t:
        return

    try:
        result = _tour_machine().close(t, force=force)
    except PickemError as e:
        click.echo(f"❌ {e}")
        return

    if not result["changed"]:
        click.echo(f"✅ Tour '{t.name}' is already CLOSED")
        return

    click.echo(f"✅ Tour '{t.name}' is now CLOSED")
    if result["active_tours"]:
        click.echo(f"📅 Active on leaderboard: {', '.join(result['active_tours'])}")
    else:
        click.echo("⚠️  No ACTIVE tours found - leaderboard will be empty")


# Show Commands
@cli.group()
def show():
    """Show scoring commands"""
    pass


@show.command()
@click.argument("show_id", type=int)
@click.option("--keep-achievements", is_flag=True, help="Do not revoke awards from this show")
@with_appcontext
def reset(show_id, keep_achievements):
    """Clear all scoring results for a show"""
    if not click.confirm(f"Reset all scoring for show {show_id}?"):
        click.echo("Cancelled.")
        return

    try:
        result = get_submission_state_manager().reset_show(
            show_id, clear_achievements=not keep_achievements
        )
    except PickemError as e:
        click.echo(f"❌ {e}")
        return

    click.echo(
        f"✅ Show {show_id} ({result['show_date']}) reset: "
        f"{result['submissions_reset']} submissions, {result['picks_reset']} picks, "
        f"{result['achievements_revoked']} achievements revoked"
    )


@show.command("test-score")
@click.argument("show_id", type=int)
@click.argument("user_id", type=int)
@with_appcontext
def test_score(show_id, user_id):
    """Score one user's submission against the live setlist"""
    try:
        result = get_submission_state_manager().force_test_score(show_id, user_id)
    except PickemError as e:
        click.echo(f"❌ {e}")
        return

    if not result["scored"]:
        click.echo(f"⚠️  {result['message']}")
        return

    click.echo(
        f"🎵 {result['show_date']} at {result['venue']}: {result['song_count']} songs "
        f"({'final' if result['is_final'] else 'in progress'})"
    )
    for pick in result["picks"]:
        icon = {"played": "✅", "not_played": "❌"}.get(pick["outcome"], "⏳")
        song = pick["song"]["name"] if pick["song"] else "?"
        click.echo(f"   {icon} {pick['pick_type']:<8} {song} ({pick['points_earned']} pts)")
    click.echo(f"✅ Total: {result['total_points']} points")


@show.command("submit-picks")
@click.argument("show_id", type=int)
@click.argument("user_id", type=int)
@click.option("--opener", required=True, help="Opener song slug")
@click.option("--encore", required=True, help="Encore song slug")
@click.option("--song", "songs", multiple=True, help="General pick slug (eleven required)")
@with_appcontext
def submit_picks(show_id, user_id, opener, encore, songs):
    """Create or replace a user's picks before the show locks"""
    picks = [
        {"pick_type": PickCategory.OPENER.value, "song": opener},
        {"pick_type": PickCategory.ENCORE.value, "song": encore},
    ]
    picks += [{"pick_type": PickCategory.GENERAL.value, "song": slug} for slug in songs]

    try:
        result = get_pick_submission_service().submit_picks(user_id, show_id, picks)
    except PickemError as e:
        click.echo(f"❌ {e}")
        return

    click.echo(f"✅ {result['message']} (submission {result['submission']['id']})")


@show.command("lock-time")
@click.argument("show_id", type=int)
@with_appcontext
def lock_time(show_id):
    """Print when picks lock for a show"""
    s = db.session.get(Show, show_id)
    if not s:
        click.echo(f"❌ Show {show_id} not found")
        return

    resolver = get_lock_resolver()
    lock_at = resolver.lock_instant_for_show(s)
    if lock_at is None:
        click.echo(f"⚠️  Lock time for {s.show_date} at {s.venue} cannot be determined")
        return

    click.echo(f"🔒 {s.show_date} at {s.venue} ({s.location})")
    click.echo(f"   Venue time: {format_lock_time(lock_at, s.timezone)}")
    click.echo(f"   UTC:        {lock_at.isoformat()}")
    click.echo(f"   Locked:     {'yes' if resolver.is_show_locked(s) else 'no'}")


@show.command("mark-old-complete")
@click.argument("cutoff_date")
@with_appcontext
def mark_old_complete(cutoff_date):
    """Mark incomplete shows before CUTOFF_DATE (YYYY-MM-DD) as complete"""
    try:
        result = get_submission_state_manager().mark_old_shows_complete(cutoff_date)
    except ValueError:
        click.echo(f"❌ Invalid cutoff date: {cutoff_date}")
        return

    click.echo(f"✅ Marked {result['updated_count']} shows as complete")
    for remaining in result["remaining_incomplete"]:
        click.echo(f"   ⏳ {remaining['date']} {remaining['venue']} ({remaining['location']})")


# Scoring Commands
@cli.group()
def score():
    """Scoring pass commands"""
    pass


@score.command()
@click.option("--force", is_flag=True, help="Rescore submissions even if nothing changed")
@with_appcontext
def run(force):
    """Run a scoring pass now"""
    result = run_gated_scoring_pass(force=force)
    if result["skipped"]:
        click.echo("⚠️  No ACTIVE tours, nothing to score")
        return

    for summary in result["results"]:
        click.echo(
            f"  [{summary['status']}] show {summary['show_id']} ({summary['show_date']}): "
            f"{summary['song_count']} songs, "
            f"{summary['submissions_updated']}/{summary['submissions_attempted']} updated"
        )
        for failure in summary["failures"]:
            click.echo(f"     ❌ submission {failure['submission_id']}: {failure['error']}")
    click.echo(f"✅ Processed {result['shows_processed']} show(s)")


@score.command("status")
@with_appcontext
def score_status():
    """List shows with unscored submissions"""
    pending = get_submission_state_manager().pending_shows()
    if not pending:
        click.echo("✅ Nothing pending")
        return

    for entry in pending:
        click.echo(
            f"  ⏳ [{entry['id']}] {entry['show_date']} {entry['venue']}: "
            f"{entry['unscored_count']}/{entry['submission_count']} unscored"
        )


# Sync Commands
@cli.group()
def sync():
    """Data synchronization commands"""
    pass


def _data_sync():
    return DataSync(get_setlist_client(), get_lock_resolver())


@sync.command()
@click.option("--year", type=int, help="Schedule year (default: current year)")
@with_appcontext
def tours(year):
    """Sync tours and shows from the setlist feed"""
    year = year or datetime.now(timezone.utc).year
    click.echo(f"Syncing tours for {year}...")
    success, message = _data_sync().sync_tours(year)
    click.echo(f"{'✅' if success else '❌'} {message}")


@sync.command()
@with_appcontext
def songs():
    """Sync the song catalog"""
    success, message = _data_sync().sync_songs()
    click.echo(f"{'✅' if success else '❌'} {message}")


# Achievement Commands
@cli.group()
def achievements():
    """Achievement catalog commands"""
    pass


@achievements.command()
@with_appcontext
def catalog():
    """Create or update the achievement catalog"""
    rows = get_achievement_evaluator().ensure_catalog()
    click.echo(f"✅ {len(rows)} catalog entries up to date")


@achievements.command("founding-members")
@click.option(
    "--before",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Only users created before this date",
)
@with_appcontext
def founding_members(before):
    """Award Founding Member to existing users"""
    awarded = get_achievement_evaluator().award_founding_members(created_before=before)
    click.echo(f"✅ Awarded Founding Member to {awarded} user(s)")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")
        logging.error(f"Database init failed: {e}")


# Info Commands
@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🎸 Setlist Pick'em Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    active = Tour.get_active_tours()
    if active:
        for t in active:
            done = t.shows.filter_by(is_complete=True).count()
            click.echo(f"✅ Active Tour: {t.name} ({done}/{t.shows.count()} shows complete)")
    else:
        click.echo("⚠️  Active Tour: None (scoring passes are skipped)")

    click.echo(f"👥 Players: {User.query.filter_by(is_active=True, is_admin=False).count()}")
    click.echo(f"📝 Submissions: {Submission.query.count()}")
    click.echo(f"⏳ Unscored: {Submission.query.filter_by(is_scored=False).count()}")
    click.echo(
        f"🔑 Setlist API key: {'set' if app.config.get('PHISHNET_API_KEY') else 'MISSING'}"
    )


if __name__ == "__main__":
    with app.app_context():
        cli()
