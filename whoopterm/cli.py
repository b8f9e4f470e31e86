import sys
from datetime import timedelta

import click

from whoopterm import __version__
from whoopterm.clients.oauth import OAuthClient
from whoopterm.clients.whoop import WhoopClient
from whoopterm.config import Config, load_preferences
from whoopterm.errors import (
    ApiError,
    AuthError,
    CacheIOError,
    MissingCredentialsError,
    NetworkError,
)
from whoopterm.logger import setup_logging
from whoopterm.models import Profile
from whoopterm.services.auth import AuthManager
from whoopterm.services.authorize import run_authorization_flow
from whoopterm.services.cache import CacheStore
from whoopterm.services.metrics import ALL_METRIC_KEYS
from whoopterm.services.sync import OUTCOME_FAILED, SyncEngine
from whoopterm.services.token_store import TokenStore
from whoopterm.dashboard.app import run_dashboard


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _build_services(client_id: str, client_secret: str, preferences: dict):
    """Wire the storage, auth and sync layers from configuration."""
    oauth = OAuthClient(client_id, client_secret)
    auth = AuthManager(TokenStore(), oauth)
    cache = CacheStore(default_ttl=timedelta(minutes=preferences["cache_ttl_minutes"]))
    client = WhoopClient()
    engine = SyncEngine(cache, auth, client)
    return auth, cache, client, engine


def _authorize(auth: AuthManager):
    click.echo("Opening your browser to authorize whoopterm...")
    credential = run_authorization_flow(
        auth,
        on_url=lambda url: click.echo(f"If the browser does not open, visit:\n  {url}"),
    )
    expires = credential.expires_at.astimezone().strftime('%Y-%m-%d %H:%M')
    click.echo(f"✓ Authorized. Token valid until {expires}")


def _test_connection(auth: AuthManager, client: WhoopClient):
    credential = auth.ensure_valid()
    profile = Profile.from_api(client.get_profile(credential.access_token))
    click.echo(f"✓ Connected as {profile.full_name or profile.email or profile.user_id}")


def _refresh(engine: SyncEngine):
    results = engine.sync(ALL_METRIC_KEYS, force=True)

    click.echo("\nSync Summary:")
    for key in sorted(results):
        result = results[key]
        detail = f" ({result.reason})" if result.reason else ""
        click.echo(f"  {key:<10} {result.outcome}{detail}")

    auth_failures = [r for r in results.values() if r.is_auth_failure]
    if auth_failures:
        _fail(f"{auth_failures[0].reason}")
    failed = [k for k, r in results.items() if r.outcome == OUTCOME_FAILED]
    if failed:
        click.echo(f"Warning: no data for {', '.join(sorted(failed))}", err=True)


@click.command()
@click.option('--auth', 'do_auth', is_flag=True, help='Run the WHOOP authorization flow')
@click.option('--test', 'do_test', is_flag=True, help='Verify API connectivity and exit')
@click.option('--refresh', 'do_refresh', is_flag=True, help='Force a sync of all metrics and exit')
@click.version_option(__version__, prog_name='whoopterm')
def cli(do_auth, do_test, do_refresh):
    """Terminal dashboard for WHOOP recovery, sleep and workout data."""
    if sum((do_auth, do_test, do_refresh)) > 1:
        raise click.UsageError("--auth, --test and --refresh are mutually exclusive")

    try:
        client_id, client_secret = Config.require_credentials()
    except MissingCredentialsError as e:
        _fail(str(e))

    interactive = not (do_auth or do_test or do_refresh)
    try:
        setup_logging(console=not interactive)
    except OSError as e:
        _fail(f"Cannot write logs under {Config.logs_dir()}: {e}")

    preferences = load_preferences()
    auth, cache, client, engine = _build_services(client_id, client_secret, preferences)

    try:
        if do_auth:
            _authorize(auth)
        elif do_test:
            _test_connection(auth, client)
        elif do_refresh:
            _refresh(engine)
        else:
            run_dashboard(engine, cache, preferences)
    except AuthError as e:
        _fail(str(e))
    except CacheIOError as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Storage failure: {e}")
    except (NetworkError, ApiError) as e:
        _fail(f"Could not reach WHOOP: {e}")


def main():
    cli()


if __name__ == '__main__':
    main()
