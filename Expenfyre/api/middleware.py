"""Request helpers shared by the blueprints."""

import functools
from typing import Any, Callable, Mapping, Optional

import flask
from flask import g, request

from ..status import status

ACCESS_COOKIE = 'access_token'
REFRESH_COOKIE = 'refresh_token'

EXTENSION_KEY = 'expenfyre'


def get_services() -> Any:
    """The :class:`Expenfyre.api.app.Services` of the current application."""
    return flask.current_app.extensions[EXTENSION_KEY]


def bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return None


def get_access_token() -> Optional[str]:
    """The access token from the ``Authorization`` header, or else the ``access_token`` cookie."""
    return bearer_token() or request.cookies.get(ACCESS_COOKIE) or None


def require_auth(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator rejecting requests without a valid access token.

    Sets ``g.user`` (:class:`Expenfyre.data.model.User`) and ``g.access_token`` for the view.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        token = get_access_token()
        g.user = get_services().auth.authenticate(token)
        g.access_token = token
        return func(*args, **kwargs)

    return wrapper


def serialize(value: Any) -> Any:
    """Convert records (anything with ``to_dict``) nested in lists and dicts to plain data."""
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    return value


def success(data: Any = None, code: int = 200, **extra: Any) -> flask.Response:
    """Build a ``{success: true, data, ...}`` JSON response."""
    body = {'success': True}
    if data is not None:
        body['data'] = serialize(data)
    body.update({k: serialize(v) for k, v in extra.items()})
    response = flask.jsonify(body)
    response.status_code = code
    return response


def failure(message: str, code: int) -> flask.Response:
    """Build a ``{success: false, error}`` JSON response."""
    response = flask.jsonify({'success': False, 'error': message})
    response.status_code = code
    return response


def json_body() -> Mapping[str, Any]:
    """The request's JSON object body.

    Raises:
        status.ValidationException: If the body is not a JSON object.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise status.ValidationException('Request body must be a JSON object.')
    return data


def int_arg(name: str, default: int) -> int:
    """Read an integer query argument.

    Raises:
        status.ValidationException: If the argument is present but not an integer.
    """
    value = request.args.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise status.ValidationException(f'"{name}" must be an integer.') from None


def set_auth_cookies(response: flask.Response, tokens: Mapping[str, Any]) -> flask.Response:
    """Attach the access and refresh token cookies to ``response``."""
    settings = get_services().settings
    response.set_cookie(
        ACCESS_COOKIE, tokens['access_token'], max_age=settings.access_token_ttl,
        httponly=True, secure=True, samesite='None', path='/',
    )
    response.set_cookie(
        REFRESH_COOKIE, tokens['refresh_token'], max_age=settings.refresh_token_ttl,
        httponly=True, secure=True, samesite='None', path='/',
    )
    return response


def clear_auth_cookies(response: flask.Response) -> flask.Response:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path='/', secure=True, httponly=True, samesite='None')
    return response
