"""Liveness check."""

import flask

from ..core.database import now_str

blueprint = flask.Blueprint('health', __name__, url_prefix='/api')


@blueprint.get('/health')
def health():
    return flask.jsonify({'status': 'ok', 'timestamp': now_str()})
