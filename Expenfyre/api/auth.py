"""Google sign-in, token refresh, sign-out, session maintenance and access requests."""

import logging

import flask
from flask import g, request

from .middleware import (
    REFRESH_COOKIE,
    bearer_token,
    clear_auth_cookies,
    get_services,
    json_body,
    require_auth,
    set_auth_cookies,
    success,
)
from ..status import status

blueprint = flask.Blueprint('auth', __name__, url_prefix='/api')


@blueprint.get('/auth/google')
def google_login():
    url = get_services().auth.authorization_url(request.args.get('state'))
    return flask.redirect(url, code=302)


@blueprint.get('/auth/google/callback')
def google_callback():
    """Finish sign-in and hand the result to the opener window.

    Renders a page that posts ``AUTH_SUCCESS`` (with tokens and user) or ``ACCESS_DENIED``
    (with the Google profile) to the frontend and closes itself.
    """
    services = get_services()
    if request.args.get('error'):
        raise status.OAuthException(request.args['error'])
    code = request.args.get('code')
    if not code:
        raise status.ValidationException('Missing authorization code.')

    profile = services.auth.exchange_code(code)
    try:
        result = services.auth.login(profile)
    except status.AccessDeniedException as ex:
        html = flask.render_template(
            'access_denied.html',
            user_info=ex.profile,
            target_origin=services.settings.frontend_url,
        )
        return flask.make_response(html, 401)

    html = flask.render_template(
        'auth_success.html',
        tokens=result['tokens'],
        user=result['user'],
        target_origin=services.settings.frontend_url,
    )
    return set_auth_cookies(flask.make_response(html), result['tokens'])


@blueprint.get('/auth/me')
@require_auth
def me():
    return success(g.user)


def _refresh_token_from_request():
    body = request.get_json(silent=True)
    if isinstance(body, dict) and body.get('refresh_token'):
        return body['refresh_token']
    return bearer_token() or request.args.get('refresh_token') or request.cookies.get(REFRESH_COOKIE)


@blueprint.post('/auth/refresh')
def refresh():
    result = get_services().auth.refresh(_refresh_token_from_request())
    response = success(result)
    return set_auth_cookies(response, result)


@blueprint.post('/auth/signout')
@require_auth
def signout():
    revoked = get_services().auth.sign_out(g.user.email, g.access_token)
    return clear_auth_cookies(success({'revoked': revoked}, message='Signed out successfully'))


@blueprint.post('/auth/clear-rate-limit')
@require_auth
def clear_rate_limit():
    body = request.get_json(silent=True) or {}
    email = body.get('email') or g.user.email
    if email != g.user.email:
        raise status.PermissionDeniedException('You can only clear your own rate limits.')
    cleared = get_services().auth.clear_rate_limit(email)
    return success({'cleared': cleared}, message=f'Rate limit cleared for {email}')


@blueprint.post('/auth/cleanup')
@require_auth
def cleanup():
    result = get_services().auth.cleanup()
    logging.info(f'Session cleanup requested by {g.user.email}')
    return success(result)


@blueprint.get('/auth/cleanup/stats')
@require_auth
def cleanup_stats():
    return success(get_services().auth.cleanup_stats())


@blueprint.post('/access-request')
def access_request():
    request_id = get_services().auth.submit_access_request(json_body())
    return success({'request_id': request_id}, message='Access request submitted successfully')
