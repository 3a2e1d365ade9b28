"""Flask application factory.

:func:`create_app` wires the typed settings into the key-value store, the Sheets client and
the services once, registers the blueprints, restricts CORS to the configured origins, and
renders every error as a ``{success: false, error}`` envelope.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import flask
from flask import request
from werkzeug.exceptions import HTTPException

from . import analytics, auth, budgets, expenses, groups, health
from .middleware import EXTENSION_KEY, failure
from ..core.auth import AuthService
from ..core.database import KeyValueStore
from ..core.service import SheetsClient
from ..core.session import SessionStore
from ..data.analytics import AnalyticsService
from ..data.budgets import BudgetsService
from ..data.expenses import ExpensesService
from ..data.groups import GroupsService
from ..log import log
from ..settings import lib
from ..status import status

CORS_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'
CORS_HEADERS = 'Content-Type, Authorization'

# Multipart overhead allowed on top of the upload limit
UPLOAD_OVERHEAD_BYTES = 1024 * 1024


@dataclass
class Services:
    """Everything the views need, built once per application."""
    settings: lib.Settings
    kv: KeyValueStore
    sessions: SessionStore
    sheets: SheetsClient
    auth: AuthService
    groups: GroupsService
    expenses: ExpensesService
    budgets: BudgetsService
    analytics: AnalyticsService


def build_services(settings: lib.Settings, sheets: Optional[SheetsClient] = None,
                   kv: Optional[KeyValueStore] = None,
                   today: Optional[Callable[[], datetime.date]] = None) -> Services:
    """Construct the service graph from ``settings``.

    Args:
        settings: The service settings.
        sheets: Spreadsheet repository to use instead of a :class:`SheetsClient`.
        kv: Key-value store to use instead of one at ``settings.get_kv_path()``.
        today: Date source for the analytics month windows.
    """
    kv = kv or KeyValueStore(settings.get_kv_path())
    sheets = sheets or SheetsClient(settings)
    sessions = SessionStore(kv, refresh_ttl=settings.refresh_token_ttl)

    group_service = GroupsService(sheets)
    expense_service = ExpensesService(settings, sheets, group_service, sessions)
    budget_service = BudgetsService(sheets, group_service, expense_service)

    return Services(
        settings=settings,
        kv=kv,
        sessions=sessions,
        sheets=sheets,
        auth=AuthService(settings, sessions, sheets, clock=kv.clock),
        groups=group_service,
        expenses=expense_service,
        budgets=budget_service,
        analytics=AnalyticsService(expense_service, budget_service, today=today),
    )


def _register_cors(app: flask.Flask, settings: lib.Settings) -> None:
    allowed = set(settings.cors_origins)

    @app.before_request
    def answer_preflight():
        if request.method == 'OPTIONS':
            return flask.make_response('', 204)
        return None

    @app.after_request
    def apply_cors(response: flask.Response) -> flask.Response:
        origin = request.headers.get('Origin')
        if origin and origin in allowed:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Access-Control-Allow-Credentials'] = 'true'
            response.headers['Access-Control-Allow-Methods'] = CORS_METHODS
            response.headers['Access-Control-Allow-Headers'] = CORS_HEADERS
            response.vary.add('Origin')
        return response


def _register_error_handlers(app: flask.Flask) -> None:

    @app.errorhandler(status.BaseStatusException)
    def handle_status_exception(ex: status.BaseStatusException):
        return failure(str(ex), ex.http_status)

    @app.errorhandler(HTTPException)
    def handle_http_exception(ex: HTTPException):
        return failure(ex.description or ex.name, ex.code or 500)

    @app.errorhandler(Exception)
    def handle_exception(ex: Exception):
        logging.exception(f'Unhandled error on {request.method} {request.path}: {ex}')
        return failure(status.get_message(status.Status.UnknownStatus), 500)


def create_app(settings: Optional[lib.Settings] = None, sheets: Optional[SheetsClient] = None,
               kv: Optional[KeyValueStore] = None,
               today: Optional[Callable[[], datetime.date]] = None) -> flask.Flask:
    """Create the Expenfyre Flask application.

    Args:
        settings: Service settings. Loaded from the environment when omitted.
        sheets: Optional spreadsheet repository override.
        kv: Optional key-value store override.
        today: Optional date source for analytics.

    Returns:
        flask.Flask: The configured application.
    """
    settings = settings or lib.load_settings()
    log.set_logging_level(settings.log_level)

    app = flask.Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = settings.upload_max_bytes + UPLOAD_OVERHEAD_BYTES
    app.json.sort_keys = False

    app.extensions[EXTENSION_KEY] = build_services(settings, sheets=sheets, kv=kv, today=today)

    for module in (auth, groups, expenses, budgets, analytics, health):
        app.register_blueprint(module.blueprint)

    _register_cors(app, settings)
    _register_error_handlers(app)

    logging.info(f'Expenfyre API ready for spreadsheet "{settings.sheet_id}"')
    return app
