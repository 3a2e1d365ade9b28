"""
Expenfyre: expense-tracking API backed by Google Sheets.

This package provides:

- :mod:`Expenfyre.core` – Token codec, key-value session store, Google Sheets client and the authentication service.
- :mod:`Expenfyre.data` – Row mappers and the group, expense, budget and analytics services.
- :mod:`Expenfyre.api` – The Flask application factory and its blueprints.
- :mod:`Expenfyre.settings` – Typed settings, schema validation and loading from the environment.
- :mod:`Expenfyre.status` – Status enum and the HTTP-mapped exception hierarchy.
- :mod:`Expenfyre.log` – Logging setup and level control.

Use :func:`Expenfyre.exec_` to serve the API.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('Expenfyre requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'Expenfyre: expense-tracking API backed by Google Sheets.'

from .log import log

log.setup_logging()


def exec_(host: str = '0.0.0.0', port: int = 8787) -> None:
    """Load the settings from the environment and serve the API.

    Uses the Flask development server with one thread per request.
    """
    from .api import app
    app.create_app().run(host=host, port=port, threaded=True)


if __name__ == '__main__':
    exec_()
