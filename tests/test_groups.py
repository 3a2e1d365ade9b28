"""
Tests for Expenfyre.data.groups (membership, roles and isolation).

Run:
    python -m unittest tests.test_groups
"""
import unittest

from Expenfyre.data.model import Group, GroupMember
from Expenfyre.status import status
from tests.base import ALICE, BOB, BaseTestCase, CAROL, DAVE


class GroupsServiceTests(BaseTestCase):

    @property
    def groups(self):
        return self.services.groups

    def member_rows(self, group_id):
        return [m for m in self.sheets.records(GroupMember) if m['group_id'] == group_id]

    def test_user_groups_are_isolated(self):
        self.assertEqual([g.group_id for g in self.groups.get_user_groups(ALICE)], ['GRP1'])
        self.assertEqual([g.group_id for g in self.groups.get_user_groups(CAROL)], ['GRP2'])
        self.assertEqual(self.groups.get_user_groups(DAVE), [])

        self.assertTrue(self.groups.has_group_access(BOB, 'GRP1'))
        self.assertFalse(self.groups.has_group_access(CAROL, 'GRP1'))

        with self.assertRaises(status.GroupNotFoundException):
            self.groups.get_group_members(CAROL, 'GRP1')

    def test_get_group_members(self):
        members = self.groups.get_group_members(BOB, 'GRP1')
        self.assertEqual(sorted(m.user_email for m in members), [ALICE, BOB])

    def test_resolve_group_id(self):
        self.assertEqual(self.groups.resolve_group_id(ALICE), 'GRP1')
        self.assertEqual(self.groups.resolve_group_id(ALICE, 'GRP1'), 'GRP1')
        # No default configured: first group
        self.assertEqual(self.groups.resolve_group_id(BOB), 'GRP1')

        with self.assertRaises(status.GroupNotFoundException):
            self.groups.resolve_group_id(ALICE, 'GRP2')
        with self.assertRaises(status.ValidationException):
            self.groups.resolve_group_id(DAVE)

    def test_create_group(self):
        group = self.groups.create_group(DAVE, '  Trip  ', 'Summer')

        self.assertEqual(group.name, 'Trip')
        self.assertEqual(group.owner_email, DAVE)
        self.assertTrue(group.group_id.startswith('GRP'))
        self.assertEqual(self.groups.get_default_group(DAVE), group)

        members = self.groups.get_group_members(DAVE, group.group_id)
        self.assertEqual([(m.user_email, m.role) for m in members], [(DAVE, 'owner')])

        with self.assertRaises(status.ValidationException):
            self.groups.create_group(DAVE, '   ')

    def test_add_member(self):
        member = self.groups.add_group_member(ALICE, 'GRP1', DAVE, 'admin')
        self.assertEqual(member.role, 'admin')
        self.assertTrue(self.groups.has_group_access(DAVE, 'GRP1'))

        with self.assertRaises(status.ConflictException) as ctx:
            self.groups.add_group_member(ALICE, 'GRP1', DAVE)
        self.assertEqual(ctx.exception.http_status, 409)

        # Admins can add members too
        self.groups.add_group_member(DAVE, 'GRP1', CAROL)
        self.assertTrue(self.groups.has_group_access(CAROL, 'GRP1'))

    def test_add_member_requires_manager_role(self):
        with self.assertRaises(status.PermissionDeniedException) as ctx:
            self.groups.add_group_member(BOB, 'GRP1', DAVE)
        self.assertEqual(ctx.exception.http_status, 403)

        with self.assertRaises(status.GroupNotFoundException):
            self.groups.add_group_member(CAROL, 'GRP1', DAVE)

    def test_add_member_validation(self):
        with self.assertRaises(status.ValidationException):
            self.groups.add_group_member(ALICE, 'GRP1', 'not-an-email')
        with self.assertRaises(status.ValidationException):
            self.groups.add_group_member(ALICE, 'GRP1', DAVE, 'owner')

    def test_remove_member(self):
        self.groups.remove_group_member(ALICE, 'GRP1', BOB)

        self.assertFalse(self.groups.has_group_access(BOB, 'GRP1'))
        rows = [m for m in self.member_rows('GRP1') if m['user_email'] == BOB]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['status'], 'inactive')

        with self.assertRaises(status.MemberNotFoundException):
            self.groups.remove_group_member(ALICE, 'GRP1', BOB)

    def test_removed_member_is_reactivated(self):
        self.groups.remove_group_member(ALICE, 'GRP1', BOB)
        member_count = len(self.member_rows('GRP1'))

        member = self.groups.add_group_member(ALICE, 'GRP1', BOB, 'admin')

        self.assertEqual(member.group_member_id, 'GM2')
        self.assertEqual(len(self.member_rows('GRP1')), member_count)
        self.assertTrue(self.groups.has_group_access(BOB, 'GRP1'))

    def test_members_can_leave_but_not_remove_others(self):
        self.groups.add_group_member(ALICE, 'GRP1', DAVE)
        with self.assertRaises(status.PermissionDeniedException):
            self.groups.remove_group_member(BOB, 'GRP1', DAVE)

        self.groups.remove_group_member(BOB, 'GRP1', BOB)
        self.assertFalse(self.groups.has_group_access(BOB, 'GRP1'))

    def test_owner_cannot_be_removed(self):
        self.groups.add_group_member(ALICE, 'GRP1', DAVE, 'admin')
        with self.assertRaises(status.PermissionDeniedException):
            self.groups.remove_group_member(DAVE, 'GRP1', ALICE)
        with self.assertRaises(status.PermissionDeniedException):
            self.groups.remove_group_member(ALICE, 'GRP1', ALICE)

    def test_update_group(self):
        group = self.groups.update_group(ALICE, 'GRP1', {'name': 'Home', 'owner_email': BOB})
        self.assertEqual(group.name, 'Home')
        self.assertEqual(group.owner_email, ALICE)

        stored = next(g for g in self.sheets.records(Group) if g['group_id'] == 'GRP1')
        self.assertEqual(stored['name'], 'Home')

        with self.assertRaises(status.PermissionDeniedException):
            self.groups.update_group(BOB, 'GRP1', {'name': 'Mine'})
        with self.assertRaises(status.ValidationException):
            self.groups.update_group(ALICE, 'GRP1', {'name': ' '})

    def test_delete_group(self):
        with self.assertRaises(status.PermissionDeniedException):
            self.groups.delete_group(BOB, 'GRP1')

        self.groups.delete_group(ALICE, 'GRP1')

        self.assertEqual(self.groups.get_user_groups(ALICE), [])
        self.assertEqual(self.groups.get_user_groups(BOB), [])
        self.assertTrue(all(m['status'] == 'inactive' for m in self.member_rows('GRP1')))
        with self.assertRaises(status.GroupNotFoundException):
            self.groups.update_group(ALICE, 'GRP1', {'name': 'Back'})


if __name__ == '__main__':
    unittest.main()
