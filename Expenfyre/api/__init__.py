"""
HTTP API: the Flask application factory and one blueprint per route area.

- :mod:`Expenfyre.api.app` – :func:`create_app`, CORS and the JSON error envelope.
- :mod:`Expenfyre.api.middleware` – Token extraction, the ``require_auth`` decorator and response helpers.
- :mod:`Expenfyre.api.auth` – Google sign-in, token refresh, sign-out, maintenance and access requests.
- :mod:`Expenfyre.api.groups` – Groups and memberships.
- :mod:`Expenfyre.api.expenses` – Expenses, categories and receipt files.
- :mod:`Expenfyre.api.budgets` – Budgets and budget analytics.
- :mod:`Expenfyre.api.analytics` – Aggregated analytics.
- :mod:`Expenfyre.api.health` – Liveness check.
"""
