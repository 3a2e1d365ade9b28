"""
Session bookkeeping on top of the key-value store.

Owns the key layout used by the auth and file endpoints:

    ``refresh_token:<jti>``     -> email the refresh token was issued to
    ``blacklist:<jti>``         -> ``"true"`` for revoked token ids
    ``rate_limit:<op>:<email>`` -> fixed-window attempt counter
    ``user:<email>``            -> JSON of the signed-in user
    ``file:<name>``             -> base64 data-URL of an uploaded receipt
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .database import KeyValueStore

REFRESH_PREFIX = 'refresh_token:'
BLACKLIST_PREFIX = 'blacklist:'
RATE_LIMIT_PREFIX = 'rate_limit:'
USER_PREFIX = 'user:'
FILE_PREFIX = 'file:'


class SessionStore:
    """Refresh-token, blacklist, rate-limit, user and file records.

    Args:
        kv: The backing key-value store.
        refresh_ttl: Lifetime in seconds of refresh-token and blacklist entries.
    """

    def __init__(self, kv: KeyValueStore, refresh_ttl: int) -> None:
        self.kv = kv
        self.refresh_ttl = refresh_ttl

    # Refresh tokens

    def remember_refresh(self, jti: str, email: str) -> None:
        self.kv.put(f'{REFRESH_PREFIX}{jti}', email, ttl=self.refresh_ttl)

    def refresh_owner(self, jti: str) -> Optional[str]:
        """Return the email a live refresh token id belongs to, or None when revoked or expired."""
        return self.kv.get(f'{REFRESH_PREFIX}{jti}')

    def forget_refresh(self, jti: str) -> None:
        self.kv.delete(f'{REFRESH_PREFIX}{jti}')

    def refresh_jtis_for(self, email: str) -> List[str]:
        """Scan every live refresh token and return the ids issued to ``email``."""
        return [
            key[len(REFRESH_PREFIX):]
            for key, owner in self.kv.items(REFRESH_PREFIX).items()
            if owner == email
        ]

    # Blacklist

    def blacklist(self, jti: str) -> None:
        self.kv.put(f'{BLACKLIST_PREFIX}{jti}', 'true', ttl=self.refresh_ttl)

    def is_blacklisted(self, jti: str) -> bool:
        return self.kv.get(f'{BLACKLIST_PREFIX}{jti}') is not None

    # Rate limits

    def hit_rate_limit(self, operation: str, email: str, max_count: int, window: int) -> bool:
        """Count one attempt of ``operation`` by ``email`` against a fixed window.

        Args:
            operation: Operation name, e.g. ``create`` or ``refresh``.
            email: The user the attempt is counted for.
            max_count: Attempts allowed per window.
            window: Window length in seconds.

        Returns:
            bool: True if the attempt is allowed (and was counted), False if the window's
            quota is already used up.
        """
        key = f'{RATE_LIMIT_PREFIX}{operation}:{email}'
        current = self.kv.get(key)
        if current is not None and int(current) >= max_count:
            logging.warning(f'Rate limit for "{operation}" reached by {email} ({current}/{max_count}).')
            return False
        self.kv.incr(key, ttl=window)
        return True

    def clear_rate_limits(self, email: str) -> int:
        """Reset every rate-limit counter of ``email``. Returns the number of counters removed."""
        keys = [k for k in self.kv.list_keys(RATE_LIMIT_PREFIX) if k.endswith(f':{email}')]
        for key in keys:
            self.kv.delete(key)
        logging.info(f'Cleared {len(keys)} rate-limit counters for {email}.')
        return len(keys)

    # Users

    def store_user(self, user: Dict[str, Any]) -> None:
        self.kv.put(f'{USER_PREFIX}{user["email"]}', json.dumps(user))

    def load_user(self, email: str) -> Optional[Dict[str, Any]]:
        raw = self.kv.get(f'{USER_PREFIX}{email}')
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logging.warning(f'Discarding unreadable user record for {email}.')
            self.kv.delete(f'{USER_PREFIX}{email}')
            return None

    # Files

    def store_file(self, name: str, data_url: str, ttl: int) -> None:
        self.kv.put(f'{FILE_PREFIX}{name}', data_url, ttl=ttl)

    def load_file(self, name: str) -> Optional[str]:
        return self.kv.get(f'{FILE_PREFIX}{name}')

    # Maintenance

    def cleanup(self) -> Dict[str, int]:
        """Delete refresh-token, blacklist and rate-limit entries that have already expired.

        Returns:
            dict: ``cleaned`` (entries removed) and ``errors`` (prefixes that failed).
        """
        cleaned = 0
        errors = 0
        for prefix in (REFRESH_PREFIX, BLACKLIST_PREFIX, RATE_LIMIT_PREFIX):
            try:
                cleaned += self.kv.purge_expired(prefix)
            except Exception as ex:
                logging.error(f'Failed to clean up "{prefix}" entries: {ex}')
                errors += 1
        logging.info(f'Session cleanup finished: {cleaned} cleaned, {errors} errors.')
        return {'cleaned': cleaned, 'errors': errors}

    def stats(self) -> Dict[str, int]:
        """Count the live refresh-token, blacklist and rate-limit entries."""
        return {
            'refresh_tokens': len(self.kv.list_keys(REFRESH_PREFIX)),
            'blacklist_entries': len(self.kv.list_keys(BLACKLIST_PREFIX)),
            'rate_limit_entries': len(self.kv.list_keys(RATE_LIMIT_PREFIX)),
        }
