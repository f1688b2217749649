import asyncio
import click
from gateway.core.config import settings
from gateway.core.database import SessionLocal, Base, engine
from gateway.core.errors import GatewayError
from gateway.core.locks import get_account_locks
from gateway.services.account_service import AccountService
from gateway.services.account_store import SqlAlchemyAccountStore
from gateway.services.jobs import JOB_NAMES, create_job_runner
from datetime import date
import logging

logger = logging.getLogger(__name__)


def _service(db) -> AccountService:
    return AccountService(
        SqlAlchemyAccountStore(db),
        get_account_locks(),
        trial_days=settings.trial_days,
        default_daily_limit=settings.default_daily_limit,
        near_expiry_days=settings.near_expiry_days,
        high_usage_percent=settings.high_usage_percent,
    )


@click.group()
def cli():
    """Mirai Gateway CLI commands"""
    Base.metadata.create_all(bind=engine)


@cli.command()
@click.option('--channel-id', 'channel_id', required=False, help='Telegram chat id of the account')
@click.option('--list', 'list_accounts', is_flag=True, help='List all accounts')
def accounts(channel_id, list_accounts):
    """Show one account or list all of them"""
    db = SessionLocal()
    try:
        service = _service(db)
        today = date.today()
        if list_accounts:
            rows = service.list_accounts()
            if not rows:
                click.echo("No accounts found")
            else:
                click.echo(f"\nFound {len(rows)} accounts:\n")
                for account in rows:
                    click.echo(
                        f"  - {account.display_name} <{account.contact_email}> "
                        f"(Telegram: {account.contact_channel_id}, "
                        f"Usage: {account.effective_daily_count(today)}/{account.daily_limit}, "
                        f"Expires: {account.expires_at:%Y-%m-%d %H:%M})"
                    )
            return

        if not channel_id:
            click.echo("❌ Please provide --channel-id or --list", err=True)
            return

        account = service.get_by_channel_id(channel_id)
        click.echo(f"Account {account.display_name} <{account.contact_email}>")
        click.echo(f"  Telegram: {account.contact_channel_id}")
        click.echo(f"  Expires: {account.expires_at.isoformat()}")
        click.echo(f"  Usage today: {account.effective_daily_count(today)}/{account.daily_limit}")
    except GatewayError as e:
        click.echo(f"❌ {e.message}", err=True)
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--channel-id', 'channel_id', required=True, help='Telegram chat id of the account')
@click.option('--days', type=int, required=True, help='Days to add to the current expiry')
def extend(channel_id, days):
    """Extend an account's expiry by a number of days"""
    db = SessionLocal()
    try:
        account = _service(db).admin_update(channel_id, expiry_days=days)
        click.echo(f"✓ Extended {account.contact_email} until {account.expires_at.isoformat()}")
    except GatewayError as e:
        click.echo(f"❌ {e.message}", err=True)
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--channel-id', 'channel_id', required=True, help='Telegram chat id of the account')
@click.option('-y', '--yes', 'confirm', is_flag=True, help='Skip confirmation')
@click.option('--dry-run', 'dry_run', is_flag=True, help='Show what would be changed without committing')
def reset_daily(channel_id, confirm, dry_run):
    """Reset an account's daily request counter (set it to 0)"""
    db = SessionLocal()
    try:
        service = _service(db)
        account = service.get_by_channel_id(channel_id)
        used = account.effective_daily_count(date.today())
        action_desc = f"reset daily requests for {account.contact_email} ({used}/{account.daily_limit})"

        if dry_run:
            click.echo(f"🔍 Dry run: would {action_desc}")
            return

        if not confirm:
            try:
                if not click.confirm(f"Are you sure you want to {action_desc}?", default=False):
                    click.echo("Aborted")
                    return
            except click.exceptions.Abort:
                click.echo("\nAborted")
                return

        service.reset_daily(channel_id)
        click.echo(f"✓ Reset daily requests for {account.contact_email}")
    except GatewayError as e:
        click.echo(f"❌ {e.message}", err=True)
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.argument('job_name', type=click.Choice(JOB_NAMES))
def run_job(job_name):
    """Run a scheduled job once (sends its notifications again if it already ran today)"""
    try:
        result = asyncio.run(create_job_runner(settings)(job_name))
        click.echo(f"✓ {result.job}: matched {result.matched}, sent {result.sent}, failed {result.failed}")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)


if __name__ == '__main__':
    cli()
