from whoopterm.clients.base import BaseClient
from whoopterm.clients.oauth import OAuthClient
from whoopterm.clients.whoop import WhoopClient

__all__ = ['BaseClient', 'OAuthClient', 'WhoopClient']
