from whoopterm.services.auth import AuthManager
from whoopterm.services.cache import CacheEntry, CacheStore
from whoopterm.services.sync import SyncEngine, SyncResult
from whoopterm.services.token_store import TokenStore

__all__ = ['AuthManager', 'CacheEntry', 'CacheStore', 'SyncEngine', 'SyncResult', 'TokenStore']
