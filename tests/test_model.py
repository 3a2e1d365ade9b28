"""
Tests for Expenfyre.data.model (cell cleaning, recurrence and row mapping).

Run:
    python -m unittest tests.test_model
"""
import unittest

from Expenfyre.data import model
from Expenfyre.data.model import Budget, Expense, FixedMonth, GroupMember, RecurringFrom, iter_records


def budget(**kwargs) -> Budget:
    data = dict(budget_id='BUD1', category_id='cat-1', user_id='a@example.com', group_id='GRP1',
                amount=100.0, month='2024-01')
    data.update(kwargs)
    return Budget(**data)


class CellCleaningTests(unittest.TestCase):

    def test_clean_text(self):
        self.assertEqual(model.clean_text("'2024-01"), '2024-01')
        self.assertEqual(model.clean_text('  padded  '), 'padded')
        self.assertEqual(model.clean_text(None), '')
        self.assertEqual(model.clean_text(12), '12')

    def test_clean_date(self):
        self.assertEqual(model.clean_date(45306), '2024-01-15')
        self.assertEqual(model.clean_date('45306'), '2024-01-15')
        self.assertEqual(model.clean_date("'2024-02-29"), '2024-02-29')
        self.assertEqual(model.clean_date(''), '')

    def test_clean_month(self):
        self.assertEqual(model.clean_month('2024-01-15'), '2024-01')
        self.assertEqual(model.clean_month("'2024-01"), '2024-01')
        self.assertEqual(model.clean_month('recurring'), 'recurring')
        self.assertEqual(model.clean_month(45306), '2024-01')

    def test_numbers_and_flags(self):
        self.assertEqual(model.to_float('1,234.50'), 1234.5)
        self.assertEqual(model.to_float('$12'), 12.0)
        self.assertEqual(model.to_float(''), 0.0)
        self.assertEqual(model.to_float('n/a'), 0.0)
        self.assertTrue(model.to_bool('TRUE'))
        self.assertFalse(model.to_bool('no'))
        self.assertEqual(model.amount_str(500.0), '500')
        self.assertEqual(model.amount_str(12.5), '12.5')

    def test_dates_and_months(self):
        self.assertTrue(model.is_date('2024-02-29'))
        self.assertFalse(model.is_date('2023-02-29'))
        self.assertFalse(model.is_date('2024-1-5'))
        self.assertTrue(model.is_month('2024-01'))
        self.assertFalse(model.is_month('recurring'))
        self.assertEqual(model.month_of('2024-01-15T10:00:00.000Z'), '2024-01')
        self.assertEqual(model.month_of(''), '')

    def test_is_active(self):
        self.assertTrue(model.is_active(''))
        self.assertTrue(model.is_active('active'))
        self.assertFalse(model.is_active('inactive'))

    def test_make_id(self):
        value = model.make_id('EXP', 4, upper=True)
        self.assertRegex(value, r'^EXP\d{13}[A-Z0-9]{4}$')
        self.assertRegex(model.make_id('GRP', 9), r'^GRP\d{13}[a-z0-9]{9}$')


class RecurrenceTests(unittest.TestCase):

    def test_fixed_month(self):
        b = budget(month='2024-03')
        self.assertEqual(b.recurrence, FixedMonth('2024-03'))
        self.assertTrue(b.applies_to('2024-03'))
        self.assertFalse(b.applies_to('2024-04'))

    def test_recurring_from_creation_month(self):
        b = budget(month='recurring', recurring=True, created_at='2024-01-10T08:00:00.000Z')
        self.assertEqual(b.recurrence, RecurringFrom('2024-01'))
        self.assertTrue(b.applies_to('2024-01'))
        self.assertTrue(b.applies_to('2024-03'))
        self.assertFalse(b.applies_to('2023-12'))

    def test_recurring_sentinel_without_flag(self):
        b = budget(month='recurring', recurring=False, created_at='2024-02-01')
        self.assertIsInstance(b.recurrence, RecurringFrom)
        self.assertEqual(b.recurrence.start_month, '2024-02')

    def test_recurring_flag_with_month(self):
        b = budget(month='2024-05', recurring=True)
        self.assertEqual(b.recurrence, RecurringFrom('2024-05'))

    def test_recurring_without_creation_date_applies_everywhere(self):
        b = budget(month='recurring', recurring=True, created_at='')
        self.assertTrue(b.applies_to('1999-01'))

    def test_recurrence_not_serialized(self):
        self.assertNotIn('recurrence', budget().to_dict())
        self.assertNotIn('recurrence', budget().values())


class RowMappingTests(unittest.TestCase):

    def test_from_row_by_header_name(self):
        header = ['budget_id', 'amount', 'category_id', 'month', 'status', 'group_id']
        row = ['BUD9', '250', 'cat-2', "'2024-02", '', 'GRP2']
        b = Budget.from_row(header, row)

        self.assertEqual(b.budget_id, 'BUD9')
        self.assertEqual(b.amount, 250.0)
        self.assertEqual(b.category_id, 'cat-2')
        self.assertEqual(b.month, '2024-02')
        self.assertEqual(b.status, 'active')
        self.assertEqual(b.group_id, 'GRP2')
        self.assertEqual(b.user_id, '')

    def test_short_rows_and_missing_headers(self):
        # Trailing empty cells are dropped by the API
        m = GroupMember.from_row(GroupMember.COLUMNS, ['GM1', 'GRP1', 'a@example.com'])
        self.assertEqual(m.role, 'member')
        self.assertEqual(m.status, 'active')

        # Headers missing entirely fall back to the default column order
        m = GroupMember.from_row([], ['GM1', 'GRP1', 'a@example.com', 'admin'])
        self.assertEqual(m.role, 'admin')

    def test_expense_month_follows_date(self):
        e = Expense(expense_id='EXP1', category_id='cat-1', user_id='a', group_id='GRP1', amount=1.0,
                    date='2024-03-02', month='2023-01')
        self.assertEqual(e.month, '2024-03')

    def test_to_row_default_columns(self):
        row = budget(amount=500.0, rollover=True).to_row()
        self.assertEqual(len(row), len(Budget.COLUMNS))
        self.assertEqual(row[Budget.COLUMNS.index('amount')], '500')
        self.assertEqual(row[Budget.COLUMNS.index('rollover')], 'true')
        self.assertEqual(row[Budget.COLUMNS.index('status')], 'active')

    def test_to_row_follows_sheet_header(self):
        row = budget(amount=75.0).to_row(['status', 'budget_id', 'amount'])
        self.assertEqual(row[:3], ['active', 'BUD1', '75'])

    def test_to_row_leaves_unknown_columns(self):
        header = Budget.COLUMNS + ['notes']
        row = budget().to_row(header)
        self.assertEqual(len(row), len(header))
        # The API leaves None cells untouched on update
        self.assertIsNone(row[-1])

    def test_round_trip_through_sheet_row(self):
        original = budget(month='recurring', recurring=True, created_at='2024-01-10')
        restored = Budget.from_row(Budget.COLUMNS, original.to_row())
        self.assertEqual(restored, original)
        self.assertEqual(restored.recurrence, original.recurrence)

    def test_iter_records(self):
        rows = [
            GroupMember.COLUMNS,
            ['GM1', 'GRP1', 'a@example.com', 'owner'],
            [],
            ['', ' ', ''],
            ['GM2', 'GRP1', 'b@example.com'],
        ]
        records = list(iter_records(GroupMember, rows))
        self.assertEqual([n for n, _ in records], [2, 5])
        self.assertEqual([m.group_member_id for _, m in records], ['GM1', 'GM2'])
        self.assertEqual(list(iter_records(GroupMember, [])), [])


if __name__ == '__main__':
    unittest.main()
