from typing import Optional

import click

from . import __version__
from .codec import POST_TYPE_TO_TEXT, TIME_PERIOD_TO_TEXT, parse_post_type, parse_time_period
from .config import ConfigManager
from .database import Database
from .errors import DuplicateSubscriptionError, MigrationError, NotFoundError, StoreError
from .models import SubscriptionArgs

config_dir_option = click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Configuration directory"
)


def _open(config_dir: Optional[str]) -> Database:
    """Open the configured store, which must already be migrated"""
    from .app import open_database, setup_logging

    config_manager = ConfigManager(config_dir)
    cfg = config_manager.load_or_default()
    setup_logging(config_manager.get_log_dir(cfg), cfg.log_level)
    try:
        return open_database(config_manager.get_db_path(cfg))
    except StoreError as e:
        raise click.ClickException(f"Could not open database: {e}")


@click.group(name="reddit-monitor", help="Subreddit to Telegram notifier, store administration")
def cli():
    pass


@cli.command(help="Show version")
def version():
    click.echo(f"reddit-monitor {__version__}")


@cli.command(name="db-version", help="Show database schema version")
@config_dir_option
def db_version(config_dir):
    from .migrations import check_migration_needed

    db_path = ConfigManager(config_dir).get_db_path()
    if not db_path.exists():
        raise click.ClickException(f"Database {db_path} does not exist")

    try:
        needed, current, latest = check_migration_needed(db_path)
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo("📊 Database version:")
    click.echo(f"   current: v{current}")
    click.echo(f"   latest:  v{latest}")
    click.echo(f"   path:    {db_path}")
    if needed:
        click.echo("\n⚠️  Migration needed, run: reddit-monitor db-migrate")
    else:
        click.echo("\n✅ Database is up to date")


@cli.command(name="db-migrate", help="Migrate the database to the latest schema")
@config_dir_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def db_migrate(config_dir, yes):
    from .migrations import CURRENT_VERSION, check_migration_needed

    db_path = ConfigManager(config_dir).get_db_path()
    try:
        needed, current, _ = check_migration_needed(db_path)
    except MigrationError as e:
        raise click.ClickException(str(e))
    if db_path.exists() and not needed:
        click.echo(f"✅ Database is up to date (v{current})")
        return

    click.echo("📊 Database migration:")
    click.echo(f"   current: v{current}")
    click.echo(f"   target:  v{CURRENT_VERSION}")
    click.echo(f"   path:    {db_path}")

    if db_path.exists() and not yes:
        click.echo("\n⚠️  Back up the database first:")
        click.echo(f"   cp {db_path} {db_path}.bak")
        if not click.confirm("\nContinue?"):
            click.echo("Cancelled")
            return

    try:
        with Database(db_path) as db:
            old_ver, new_ver = db.migrate()
    except StoreError as e:
        raise click.ClickException(f"Migration failed: {e}")
    click.echo(f"\n✅ Migrated v{old_ver} → v{new_ver}")


@cli.command(help="Show store statistics")
@config_dir_option
def status(config_dir):
    with _open(config_dir) as db:
        stats = db.get_stats()
        schema = db.schema_version()
    click.echo(f"📊 Schema v{schema}")
    click.echo(f"   chats:           {stats.chat_count}")
    click.echo(f"   repost channels: {stats.repost_channel_count}")
    click.echo(f"   subscriptions:   {stats.subscription_count}")
    click.echo(f"   tracked posts:   {stats.post_count} ({stats.seen_post_count} delivered)")


@cli.command(help="Subscribe a chat to a subreddit")
@config_dir_option
@click.argument("chat_id", type=int)
@click.argument("subreddit")
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Max posts per poll")
@click.option("--time", "time_", type=click.Choice(list(TIME_PERIOD_TO_TEXT.values()), case_sensitive=False),
              default=None, help="Top posts time window")
@click.option("--filter", "filter_", type=click.Choice(list(POST_TYPE_TO_TEXT.values()), case_sensitive=False),
              default=None, help="Only deliver posts of this type")
def subscribe(config_dir, chat_id, subreddit, limit, time_, filter_):
    args = SubscriptionArgs(
        subreddit=subreddit,
        limit=limit,
        time=parse_time_period(time_) if time_ else None,
        filter=parse_post_type(filter_) if filter_ else None,
    )
    with _open(config_dir) as db:
        try:
            db.subscribe(chat_id, args)
        except DuplicateSubscriptionError:
            raise click.ClickException(f"Chat {chat_id} is already subscribed to r/{subreddit}")
    click.echo(f"✅ Chat {chat_id} subscribed to r/{subreddit}")


@cli.command(help="Unsubscribe a chat from a subreddit")
@config_dir_option
@click.argument("chat_id", type=int)
@click.argument("subreddit")
def unsubscribe(config_dir, chat_id, subreddit):
    with _open(config_dir) as db:
        try:
            deleted = db.unsubscribe(chat_id, subreddit)
        except NotFoundError:
            raise click.ClickException(f"Chat {chat_id} is not subscribed to r/{subreddit}")
    click.echo(f"✅ Chat {chat_id} unsubscribed from r/{deleted}")


@cli.command(name="list", help="List subscriptions, of one chat or of all chats")
@config_dir_option
@click.argument("chat_id", type=int, required=False)
def list_subscriptions(config_dir, chat_id):
    with _open(config_dir) as db:
        if chat_id is None:
            subs = db.get_all_subscriptions()
        else:
            subs = db.get_subscriptions_for_chat(chat_id)

    if not subs:
        click.echo("No subscriptions")
        return
    for sub in subs:
        details = []
        if sub.limit is not None:
            details.append(f"limit={sub.limit}")
        if sub.time is not None:
            details.append(f"time={sub.time.value}")
        if sub.filter is not None:
            details.append(f"filter={sub.filter.value}")
        suffix = f" ({', '.join(details)})" if details else ""
        click.echo(f"{sub.chat_id}\tr/{sub.subreddit}{suffix}")


@cli.command(name="repost-channel", help="Show or set the repost channel of a chat")
@config_dir_option
@click.argument("chat_id", type=int)
@click.argument("channel_id", type=int, required=False)
def repost_channel(config_dir, chat_id, channel_id):
    with _open(config_dir) as db:
        if channel_id is not None:
            db.set_repost_channel(chat_id, channel_id)
            click.echo(f"✅ Chat {chat_id} reposts to {channel_id}")
            return
        current = db.get_repost_channel(chat_id)
    if current is None:
        click.echo(f"Chat {chat_id} has no repost channel")
    else:
        click.echo(f"Chat {chat_id} reposts to {current}")


if __name__ == "__main__":
    cli()
