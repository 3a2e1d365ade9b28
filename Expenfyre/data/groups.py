"""Group membership and access control.

Every expense and budget belongs to a group, and a user sees only rows of groups they are
an active member of. Memberships and groups are soft-deleted by setting ``status`` to
``inactive``.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from .model import (
    ACTIVE,
    INACTIVE,
    MANAGER_ROLES,
    Group,
    GroupMember,
    Role,
    User,
    is_active,
    iter_records,
    make_id,
)
from ..core.database import now_str
from ..core.service import SheetsClient
from ..status import status


class GroupsService:
    """Reads and writes the ``Groups`` and ``Group_Members`` worksheets.

    Args:
        sheets: The spreadsheet repository.
    """

    def __init__(self, sheets: SheetsClient) -> None:
        self.sheets = sheets

    def _groups(self) -> Tuple[List[Any], List[Tuple[int, Group]]]:
        rows = self.sheets.get_rows(Group.TAB)
        return (rows[0] if rows else Group.COLUMNS), list(iter_records(Group, rows))

    def _members(self) -> Tuple[List[Any], List[Tuple[int, GroupMember]]]:
        rows = self.sheets.get_rows(GroupMember.TAB)
        return (rows[0] if rows else GroupMember.COLUMNS), list(iter_records(GroupMember, rows))

    def _active_memberships(self, email: str) -> List[GroupMember]:
        _, members = self._members()
        return [m for _, m in members if m.user_email == email and is_active(m.status)]

    def get_user_groups(self, email: str) -> List[Group]:
        """Active groups ``email`` is an active member of, in sheet order."""
        group_ids = {m.group_id for m in self._active_memberships(email)}
        if not group_ids:
            return []
        _, groups = self._groups()
        return [g for _, g in groups if g.group_id in group_ids and is_active(g.status)]

    def get_user_group_ids(self, email: str) -> Set[str]:
        return {g.group_id for g in self.get_user_groups(email)}

    def has_group_access(self, email: str, group_id: str) -> bool:
        return group_id in self.get_user_group_ids(email)

    def get_default_group(self, email: str) -> Optional[Group]:
        """The first group ``email`` belongs to, if any."""
        groups = self.get_user_groups(email)
        return groups[0] if groups else None

    def resolve_group_id(self, email: str, requested: Optional[str] = None) -> str:
        """Pick the group a new expense or budget is written to.

        The requested group if the caller belongs to it, otherwise the caller's configured
        default group, otherwise their first group.

        Raises:
            status.GroupNotFoundException: If ``requested`` is not one of the caller's groups.
            status.ValidationException: If the caller has no group at all.
        """
        groups = [g.group_id for g in self.get_user_groups(email)]
        if requested:
            if requested not in groups:
                raise status.GroupNotFoundException(requested)
            return requested

        users = self.sheets.get_rows(User.TAB)
        user = next((u for _, u in iter_records(User, users) if u.email == email), None)
        if user and user.default_group_id in groups:
            return user.default_group_id
        if groups:
            return groups[0]
        raise status.ValidationException('No group found for user. Create or join a group first.')

    def _require_group(self, email: str, group_id: str) -> Tuple[List[Any], int, Group, GroupMember]:
        """Find an active group and the actor's active membership in it.

        Returns:
            tuple: The Groups header, the group's sheet row number, the group and the
            actor's membership.

        Raises:
            status.GroupNotFoundException: If the group is missing, inactive, or the actor is
                not a member.
        """
        header, groups = self._groups()
        found = next(((n, g) for n, g in groups if g.group_id == group_id and is_active(g.status)), None)
        if found is None:
            raise status.GroupNotFoundException(group_id)

        membership = next((m for m in self._active_memberships(email) if m.group_id == group_id), None)
        if membership is None:
            raise status.GroupNotFoundException(group_id)

        return header, found[0], found[1], membership

    def get_group_members(self, email: str, group_id: str) -> List[GroupMember]:
        """Active members of a group the actor belongs to."""
        self._require_group(email, group_id)
        _, members = self._members()
        return [m for _, m in members if m.group_id == group_id and is_active(m.status)]

    def create_group(self, email: str, name: str, description: str = '') -> Group:
        """Create a group owned by ``email``, with ``email`` as its owner member."""
        name = (name or '').strip()
        if not name:
            raise status.ValidationException('Group name is required.')

        timestamp = now_str()
        group = Group(
            group_id=make_id('GRP', 9),
            name=name,
            description=(description or '').strip(),
            owner_email=email,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.sheets.append_row(Group.TAB, group.to_row())

        owner = GroupMember(
            group_member_id=make_id('GM', 9),
            group_id=group.group_id,
            user_email=email,
            role=Role.Owner,
            joined_at=timestamp,
        )
        self.sheets.append_row(GroupMember.TAB, owner.to_row())

        logging.info(f'Group {group.group_id} "{name}" created by {email}')
        return group

    def add_group_member(self, email: str, group_id: str, user_email: str, role: str = Role.Member) -> GroupMember:
        """Add ``user_email`` to a group. The actor must be its owner or an admin.

        A previously removed member is reactivated with the new role.

        Raises:
            status.ValidationException: If the email or role is invalid.
            status.PermissionDeniedException: If the actor is not an owner or admin.
            status.ConflictException: If ``user_email`` is already an active member.
        """
        user_email = (user_email or '').strip()
        if '@' not in user_email:
            raise status.ValidationException('A valid user_email is required.')
        if role not in (Role.Admin, Role.Member):
            raise status.ValidationException(f'Role must be "{Role.Admin}" or "{Role.Member}".')

        _, _, _, membership = self._require_group(email, group_id)
        if membership.role not in MANAGER_ROLES:
            raise status.PermissionDeniedException('Only group owners and admins can add members.')

        header, members = self._members()
        existing = [(n, m) for n, m in members if m.group_id == group_id and m.user_email == user_email]
        if any(is_active(m.status) for _, m in existing):
            raise status.ConflictException(f'{user_email} is already a member.')

        timestamp = now_str()
        if existing:
            row_number, previous = existing[-1]
            member = dataclasses.replace(previous, role=Role(role), joined_at=timestamp, status=ACTIVE)
            self.sheets.update_row(GroupMember.TAB, row_number, member.to_row(header))
        else:
            member = GroupMember(
                group_member_id=make_id('GM', 9),
                group_id=group_id,
                user_email=user_email,
                role=Role(role),
                joined_at=timestamp,
            )
            self.sheets.append_row(GroupMember.TAB, member.to_row())

        logging.info(f'{email} added {user_email} to group {group_id} as {role}')
        return member

    def remove_group_member(self, email: str, group_id: str, user_email: str) -> None:
        """Deactivate a membership. Owners and admins can remove others; anyone can leave.

        Raises:
            status.MemberNotFoundException: If ``user_email`` is not an active member.
            status.PermissionDeniedException: If the actor may not remove the member, or the
                member is the group owner.
        """
        _, _, group, membership = self._require_group(email, group_id)
        if membership.role not in MANAGER_ROLES and email != user_email:
            raise status.PermissionDeniedException('Only group owners and admins can remove members.')

        header, members = self._members()
        target = next(
            ((n, m) for n, m in members
             if m.group_id == group_id and m.user_email == user_email and is_active(m.status)),
            None
        )
        if target is None:
            raise status.MemberNotFoundException(user_email)

        row_number, member = target
        if member.role == Role.Owner or group.owner_email == user_email:
            raise status.PermissionDeniedException('The group owner cannot be removed.')

        member = dataclasses.replace(member, status=INACTIVE)
        self.sheets.update_row(GroupMember.TAB, row_number, member.to_row(header))
        logging.info(f'{email} removed {user_email} from group {group_id}')

    def update_group(self, email: str, group_id: str, patch: Dict[str, Any]) -> Group:
        """Update a group's name or description. The actor must be its owner or an admin."""
        group_header, row_number, group, membership = self._require_group(email, group_id)
        if membership.role not in MANAGER_ROLES:
            raise status.PermissionDeniedException('Only group owners and admins can update the group.')

        changes = {k: str(patch[k]).strip() for k in ('name', 'description') if patch.get(k) is not None}
        if 'name' in changes and not changes['name']:
            raise status.ValidationException('Group name cannot be empty.')

        group = dataclasses.replace(group, **changes, updated_at=now_str())
        self.sheets.update_row(Group.TAB, row_number, group.to_row(group_header))
        logging.info(f'{email} updated group {group_id}')
        return group

    def delete_group(self, email: str, group_id: str) -> None:
        """Deactivate a group and all of its memberships. Only the owner may do this."""
        group_header, row_number, group, _ = self._require_group(email, group_id)
        if group.owner_email != email:
            raise status.PermissionDeniedException('Only the group owner can delete the group.')

        timestamp = now_str()
        group = dataclasses.replace(group, status=INACTIVE, updated_at=timestamp)
        self.sheets.update_row(Group.TAB, row_number, group.to_row(group_header))

        header, members = self._members()
        for member_row, member in members:
            if member.group_id == group_id and is_active(member.status):
                member = dataclasses.replace(member, status=INACTIVE)
                self.sheets.update_row(GroupMember.TAB, member_row, member.to_row(header))

        logging.info(f'{email} deleted group {group_id}')
