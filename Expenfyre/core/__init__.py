"""
Core package for Expenfyre providing the session, token and spreadsheet plumbing.

This package includes:

- :mod:`Expenfyre.core.database` – SQLite-backed key-value store with per-key expiry.
- :mod:`Expenfyre.core.session` – Refresh-token, blacklist, rate-limit, user and file bookkeeping.
- :mod:`Expenfyre.core.tokens` – HMAC-SHA256 compact token encoding and verification.
- :mod:`Expenfyre.core.service` – Google Sheets API client and the row repository interface.
- :mod:`Expenfyre.core.auth` – Google sign-in, whitelist checks and the token lifecycle.
"""
