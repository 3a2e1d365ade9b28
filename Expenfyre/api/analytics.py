"""Aggregated analytics over the caller's expenses and budgets."""

import flask
from flask import g, request

from .middleware import get_services, int_arg, require_auth, success

blueprint = flask.Blueprint('analytics', __name__, url_prefix='/api/analytics')


def _arg(name):
    return request.args.get(name) or None


@blueprint.get('/summary')
@require_auth
def summary():
    return success(get_services().analytics.summary(
        g.user.email,
        start_date=_arg('start_date'),
        end_date=_arg('end_date'),
        category_id=_arg('category_id'),
        month=_arg('month'),
    ))


@blueprint.get('/category-breakdown')
@require_auth
def category_breakdown():
    return success(get_services().analytics.category_breakdown(
        g.user.email,
        start_date=_arg('start_date'),
        end_date=_arg('end_date'),
        month=_arg('month'),
    ))


@blueprint.get('/monthly-comparison')
@require_auth
def monthly_comparison():
    return success(get_services().analytics.monthly_comparison(g.user.email, months=int_arg('months', 6)))


@blueprint.get('/budget-performance')
@require_auth
def budget_performance():
    return success(get_services().analytics.budget_performance(g.user.email, month=_arg('month')))


@blueprint.get('/top-expenses')
@require_auth
def top_expenses():
    return success(get_services().analytics.top_expenses(
        g.user.email,
        limit=int_arg('limit', 10),
        start_date=_arg('start_date'),
        end_date=_arg('end_date'),
        category_id=_arg('category_id'),
    ))


@blueprint.get('/daily-trend')
@require_auth
def daily_trend():
    return success(get_services().analytics.daily_trend(
        g.user.email,
        start_date=_arg('start_date'),
        end_date=_arg('end_date'),
    ))


@blueprint.get('/budget-utilization')
@require_auth
def budget_utilization():
    return success(get_services().analytics.budget_utilization(g.user.email, months=int_arg('months', 6)))
