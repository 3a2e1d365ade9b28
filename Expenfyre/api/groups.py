"""Groups and memberships."""

import flask
from flask import g

from .middleware import get_services, json_body, require_auth, success

blueprint = flask.Blueprint('groups', __name__, url_prefix='/api')


@blueprint.get('/groups')
@require_auth
def list_groups():
    return success(get_services().groups.get_user_groups(g.user.email))


@blueprint.post('/groups')
@require_auth
def create_group():
    body = json_body()
    group = get_services().groups.create_group(g.user.email, body.get('name'), body.get('description') or '')
    return success(group)


@blueprint.patch('/groups/<group_id>')
@require_auth
def update_group(group_id):
    return success(get_services().groups.update_group(g.user.email, group_id, json_body()))


@blueprint.delete('/groups/<group_id>')
@require_auth
def delete_group(group_id):
    get_services().groups.delete_group(g.user.email, group_id)
    return success(message='Group deleted successfully')


@blueprint.get('/groups/<group_id>/members')
@require_auth
def list_members(group_id):
    return success(get_services().groups.get_group_members(g.user.email, group_id))


@blueprint.post('/groups/<group_id>/members')
@require_auth
def add_member(group_id):
    body = json_body()
    member = get_services().groups.add_group_member(
        g.user.email,
        group_id,
        body.get('user_email') or body.get('email'),
        body.get('role') or 'member',
    )
    return success(member)


@blueprint.delete('/groups/<group_id>/members/<user_email>')
@require_auth
def remove_member(group_id, user_email):
    get_services().groups.remove_group_member(g.user.email, group_id, user_email)
    return success(message='Member removed successfully')
