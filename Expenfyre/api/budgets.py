"""Budgets and budget analytics."""

import flask
from flask import g, request

from .middleware import get_services, json_body, require_auth, success

blueprint = flask.Blueprint('budgets', __name__, url_prefix='/api')


@blueprint.get('/budgets')
@require_auth
def list_budgets():
    result = get_services().budgets.list_budgets(g.user.email, request.args)
    return success(
        result['budgets'],
        pagination={'page': result['page'], 'total': result['total'], 'totalPages': result['totalPages']},
    )


@blueprint.post('/budgets')
@require_auth
def create_budget():
    return success(get_services().budgets.create_budget(g.user.email, json_body()))


@blueprint.get('/budgets/analytics')
@require_auth
def budget_analytics():
    return success(get_services().budgets.get_budget_analytics(g.user.email, request.args.get('month') or None))


@blueprint.route('/budgets/<budget_id>', methods=['PUT', 'PATCH'])
@require_auth
def update_budget(budget_id):
    return success(get_services().budgets.update_budget(g.user.email, budget_id, json_body()))


@blueprint.delete('/budgets/<budget_id>')
@require_auth
def delete_budget(budget_id):
    get_services().budgets.delete_budget(g.user.email, budget_id)
    return success(message='Budget deleted successfully')
