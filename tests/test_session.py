"""
Tests for Expenfyre.core.session

Run:
    python -m unittest tests.test_session
"""
import unittest

from Expenfyre.core.session import SessionStore
from tests.base import BaseTestCase


class SessionStoreTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.sessions = SessionStore(self.kv, refresh_ttl=100)

    def test_refresh_records(self):
        self.sessions.remember_refresh('jti-1', 'a@example.com')
        self.sessions.remember_refresh('jti-2', 'b@example.com')
        self.sessions.remember_refresh('jti-3', 'a@example.com')

        self.assertEqual(self.sessions.refresh_owner('jti-1'), 'a@example.com')
        self.assertEqual(sorted(self.sessions.refresh_jtis_for('a@example.com')), ['jti-1', 'jti-3'])

        self.sessions.forget_refresh('jti-1')
        self.assertIsNone(self.sessions.refresh_owner('jti-1'))

        self.advance(100)
        self.assertIsNone(self.sessions.refresh_owner('jti-3'))
        self.assertEqual(self.sessions.refresh_jtis_for('a@example.com'), [])

    def test_blacklist(self):
        self.assertFalse(self.sessions.is_blacklisted('jti'))
        self.sessions.blacklist('jti')
        self.assertTrue(self.sessions.is_blacklisted('jti'))

    def test_rate_limit_window(self):
        for _ in range(3):
            self.assertTrue(self.sessions.hit_rate_limit('create', 'a@example.com', 3, 60))
        self.assertFalse(self.sessions.hit_rate_limit('create', 'a@example.com', 3, 60))

        # Other operations and users have their own counters
        self.assertTrue(self.sessions.hit_rate_limit('refresh', 'a@example.com', 3, 60))
        self.assertTrue(self.sessions.hit_rate_limit('create', 'b@example.com', 3, 60))

        self.advance(60)
        self.assertTrue(self.sessions.hit_rate_limit('create', 'a@example.com', 3, 60))

    def test_clear_rate_limits(self):
        self.sessions.hit_rate_limit('create', 'a@example.com', 1, 60)
        self.sessions.hit_rate_limit('refresh', 'a@example.com', 1, 60)
        self.sessions.hit_rate_limit('create', 'b@example.com', 1, 60)

        self.assertEqual(self.sessions.clear_rate_limits('a@example.com'), 2)
        self.assertTrue(self.sessions.hit_rate_limit('create', 'a@example.com', 1, 60))
        self.assertFalse(self.sessions.hit_rate_limit('create', 'b@example.com', 1, 60))

    def test_users(self):
        self.sessions.store_user({'email': 'a@example.com', 'name': 'A'})
        self.assertEqual(self.sessions.load_user('a@example.com'), {'email': 'a@example.com', 'name': 'A'})
        self.assertIsNone(self.sessions.load_user('b@example.com'))

        self.kv.put('user:broken@example.com', '{not json')
        self.assertIsNone(self.sessions.load_user('broken@example.com'))
        self.assertIsNone(self.kv.get('user:broken@example.com'))

    def test_files(self):
        self.sessions.store_file('r.png', 'data:image/png;base64,AAAA', ttl=10)
        self.assertEqual(self.sessions.load_file('r.png'), 'data:image/png;base64,AAAA')
        self.advance(10)
        self.assertIsNone(self.sessions.load_file('r.png'))

    def test_cleanup_and_stats(self):
        self.sessions.remember_refresh('jti-1', 'a@example.com')
        self.sessions.blacklist('jti-0')
        self.sessions.hit_rate_limit('create', 'a@example.com', 5, 10)

        self.assertEqual(
            self.sessions.stats(),
            {'refresh_tokens': 1, 'blacklist_entries': 1, 'rate_limit_entries': 1},
        )

        self.advance(10)
        self.assertEqual(self.sessions.stats()['rate_limit_entries'], 0)
        self.assertEqual(self.sessions.cleanup(), {'cleaned': 1, 'errors': 0})

        self.advance(100)
        self.assertEqual(self.sessions.cleanup(), {'cleaned': 2, 'errors': 0})
        self.assertEqual(
            self.sessions.stats(),
            {'refresh_tokens': 0, 'blacklist_entries': 0, 'rate_limit_entries': 0},
        )


if __name__ == '__main__':
    unittest.main()
