"""Expenses, categories and receipt files."""

import flask
from flask import g, request

from .middleware import get_services, int_arg, json_body, require_auth, success
from ..data.expenses import DEFAULT_PAGE_SIZE, ExpenseFilters
from ..status import status

blueprint = flask.Blueprint('expenses', __name__, url_prefix='/api')

FILE_CACHE_CONTROL = 'public, max-age=31536000'

# Served inline; anything else is sent as a download
INLINE_FILE_TYPES = frozenset({'image/png', 'image/jpeg', 'image/gif', 'image/webp', 'application/pdf'})


@blueprint.get('/expenses')
@require_auth
def list_expenses():
    page = int_arg('page', 1)
    limit = int_arg('limit', DEFAULT_PAGE_SIZE)
    result = get_services().expenses.list_expenses(
        g.user.email, ExpenseFilters.from_args(request.args), page=page, limit=limit
    )
    return success(
        result['expenses'],
        pagination={
            'page': result['page'],
            'limit': limit,
            'total': result['total'],
            'totalPages': result['totalPages'],
        },
    )


@blueprint.post('/expenses')
@require_auth
def create_expense():
    return success(get_services().expenses.create_expense(g.user.email, json_body()))


@blueprint.get('/expenses/budgets')
@require_auth
def list_expense_budgets():
    return success(get_services().budgets.list_budgets(g.user.email)['budgets'])


@blueprint.get('/expenses/<expense_id>')
@require_auth
def get_expense(expense_id):
    expense = get_services().expenses.get_expense(g.user.email, expense_id)
    if expense is None:
        raise status.ExpenseNotFoundException(expense_id)
    return success(expense)


@blueprint.route('/expenses/<expense_id>', methods=['PUT', 'PATCH'])
@require_auth
def update_expense(expense_id):
    expense = get_services().expenses.update_expense(g.user.email, expense_id, json_body())
    if expense is None:
        raise status.ExpenseNotFoundException(expense_id)
    return success(expense)


@blueprint.delete('/expenses/<expense_id>')
@require_auth
def delete_expense(expense_id):
    if not get_services().expenses.delete_expense(g.user.email, expense_id):
        raise status.ExpenseNotFoundException(expense_id)
    return success(message='Expense deleted successfully')


@blueprint.get('/categories')
@require_auth
def list_categories():
    return success(get_services().expenses.get_categories())


@blueprint.post('/upload')
@require_auth
def upload():
    upload_file = request.files.get('file')
    if upload_file is None:
        raise status.ValidationException('No file provided.')
    result = get_services().expenses.upload_receipt(
        g.user.email, upload_file.filename or '', upload_file.mimetype, upload_file.read()
    )
    return success(result)


@blueprint.get('/file/<path:filename>')
def serve_file(filename):
    mimetype, content = get_services().expenses.load_receipt(filename)
    response = flask.make_response(content)
    response.mimetype = mimetype
    response.headers['Cache-Control'] = FILE_CACHE_CONTROL
    response.headers['X-Content-Type-Options'] = 'nosniff'
    if mimetype not in INLINE_FILE_TYPES:
        response.headers['Content-Disposition'] = 'attachment'
    return response
