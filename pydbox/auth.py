"""Interactive authentication against Dropbox."""

import logging
from typing import Optional

import click
import dropbox
import requests
from dropbox.oauth import NotApprovedException, ProviderException

from .exceptions import DboxAuthenticationError, DboxConfigError

logger = logging.getLogger(__name__)


def run_oauth_flow(app_key: Optional[str], app_secret: Optional[str]) -> str:
    """Obtain an access token through the OAuth2 no-redirect flow.

    The user opens the authorization URL in a browser, approves the
    application and pastes the code shown by Dropbox.

    Args:
        app_key: Dropbox application key
        app_secret: Dropbox application secret

    Returns:
        OAuth2 access token

    Raises:
        DboxConfigError: If the application key is not configured
        DboxAuthenticationError: If the code is rejected
    """
    if not app_key or not app_secret:
        raise DboxConfigError(
            "Dropbox application not configured. "
            "Set DBOX_APP_KEY and DBOX_APP_SECRET environment variables."
        )

    flow = dropbox.DropboxOAuth2FlowNoRedirect(app_key, app_secret)
    authorize_url = flow.start()

    click.echo(f"1. Go to: {authorize_url}", err=True)
    click.echo('2. Click "Allow" (you might have to log in first).', err=True)
    click.echo("3. Copy the authorization code.", err=True)
    code = click.prompt("Enter the authorization code", err=True).strip()

    try:
        result = flow.finish(code)
    except (
        requests.exceptions.RequestException,
        NotApprovedException,
        ProviderException,
    ) as e:
        # Rejected codes surface as requests HTTP errors
        raise DboxAuthenticationError(f"Authentication failed: {e}") from e

    logger.debug(f"Authenticated account {result.account_id}")
    return result.access_token
