"""
Tests for Expenfyre.data.budgets (CRUD, recurring budgets and budget analytics).

Run:
    python -m unittest tests.test_budgets
"""
import unittest

from Expenfyre.data.budgets import percentage
from Expenfyre.data.model import Budget, Expense
from Expenfyre.status import status
from tests.base import ALICE, BOB, BaseTestCase, CAROL


class BudgetsServiceTests(BaseTestCase):

    @property
    def budgets(self):
        return self.services.budgets

    def create(self, email=ALICE, **kwargs):
        data = {'category_id': 'cat-1', 'amount': 500, 'month': '2024-01', 'rollover': False, 'recurring': False}
        data.update(kwargs)
        return self.budgets.create_budget(email, data)

    def seed_budget(self, budget_id, amount, month, recurring=False, created_at='2024-01-05T00:00:00.000Z',
                    category_id='cat-1', group_id='GRP1', state='active'):
        self.sheets.add(Budget(
            budget_id=budget_id, category_id=category_id, user_id=ALICE, group_id=group_id, amount=amount,
            month=month, recurring=recurring, created_at=created_at, status=state,
        ))

    def seed_expense(self, expense_id, amount, date, category_id='cat-1', group_id='GRP1', state='active'):
        self.sheets.add(Expense(
            expense_id=expense_id, category_id=category_id, user_id=ALICE, group_id=group_id, amount=amount,
            date=date, status=state,
        ))

    def test_percentage(self):
        self.assertEqual(percentage(25, 50), 50.0)
        self.assertEqual(percentage(10, 0), 0.0)

    def test_create_budget(self):
        budget = self.create()

        self.assertRegex(budget.budget_id, r'^BUD\d{13}[A-Z0-9]{4}$')
        self.assertEqual(budget.amount, 500)
        self.assertEqual(budget.month, '2024-01')
        self.assertEqual(budget.status, 'active')
        self.assertEqual(budget.group_id, 'GRP1')

        stored = self.sheets.records(Budget)
        self.assertEqual(stored[0]['amount'], '500')
        self.assertEqual(stored[0]['recurring'], 'false')

    def test_create_recurring_budget(self):
        budget = self.create(month='', recurring=True)

        self.assertEqual(budget.month, 'recurring')
        self.assertTrue(budget.recurring)
        self.assertEqual(self.sheets.records(Budget)[0]['month'], 'recurring')

    def test_create_budget_validation(self):
        with self.assertRaises(status.ValidationException):
            self.create(month='')
        with self.assertRaises(status.ValidationException):
            self.create(month='January')
        with self.assertRaises(status.ValidationException):
            self.create(amount=None)
        with self.assertRaises(status.GroupNotFoundException):
            self.create(group_id='GRP2')

    def test_query_by_month_includes_recurring(self):
        self.seed_budget('B-JAN', 100, '2024-01')
        self.seed_budget('B-MAR', 200, '2024-03')
        self.seed_budget('B-REC', 50, 'recurring', recurring=True)
        self.seed_budget('B-OLD', 75, '2024-03', state='inactive')
        self.seed_budget('B-OTHER', 80, '2024-03', group_id='GRP2')

        def ids(month):
            return sorted(b.budget_id for b in self.budgets.query(ALICE, month=month))

        self.assertEqual(ids('2024-03'), ['B-MAR', 'B-REC'])
        self.assertEqual(ids('2024-01'), ['B-JAN', 'B-REC'])
        self.assertEqual(ids('2023-12'), [])
        self.assertEqual(ids(None), ['B-JAN', 'B-MAR', 'B-REC'])

        self.assertEqual([b.budget_id for b in self.budgets.query(CAROL)], ['B-OTHER'])

    def test_list_budgets(self):
        self.seed_budget('B-JAN', 100, '2024-01')
        self.seed_budget('B-FOOD', 100, '2024-02', category_id='cat-2')

        result = self.budgets.list_budgets(BOB, {'category_id': 'cat-2'})
        self.assertEqual([b.budget_id for b in result['budgets']], ['B-FOOD'])
        self.assertEqual((result['total'], result['page'], result['totalPages']), (1, 1, 1))

    def test_update_budget(self):
        budget = self.create()
        updated = self.budgets.update_budget(ALICE, budget.budget_id, {'amount': 750, 'month': '2024-02'})

        self.assertEqual(updated.amount, 750)
        self.assertEqual(updated.month, '2024-02')
        stored = self.sheets.records(Budget)[0]
        self.assertEqual((stored['amount'], stored['month']), ('750', '2024-02'))

        with self.assertRaises(status.ValidationException):
            self.budgets.update_budget(ALICE, budget.budget_id, {'month': '2024/02'})
        with self.assertRaises(status.BudgetNotFoundException):
            self.budgets.update_budget(CAROL, budget.budget_id, {'amount': 1})

    def test_update_recurring_flag(self):
        self.seed_budget('B-REC', 50, 'recurring', recurring=True, created_at='2024-02-10T00:00:00.000Z')

        fixed = self.budgets.update_budget(ALICE, 'B-REC', {'recurring': False})
        self.assertEqual(fixed.month, '2024-02')
        self.assertFalse(fixed.recurring)

        recurring = self.budgets.update_budget(ALICE, 'B-REC', {'recurring': True})
        self.assertEqual(recurring.month, 'recurring')
        self.assertTrue(recurring.applies_to('2024-06'))

    def test_delete_budget(self):
        budget = self.create()
        self.budgets.delete_budget(ALICE, budget.budget_id)

        self.assertEqual(self.sheets.records(Budget)[0]['status'], 'inactive')
        self.assertEqual(self.budgets.query(ALICE), [])
        with self.assertRaises(status.BudgetNotFoundException):
            self.budgets.delete_budget(ALICE, budget.budget_id)

    def test_budget_analytics(self):
        self.seed_budget('B-FOOD', 50, '2024-03')
        self.seed_budget('B-REC', 100, 'recurring', recurring=True, category_id='cat-2')
        self.seed_expense('E1', 10, '2024-03-01')
        self.seed_expense('E2', 20, '2024-03-05')
        self.seed_expense('E3', 30, '2024-03-09')
        self.seed_expense('E4', 40, '2024-03-10', category_id='cat-2')
        self.seed_expense('E5', 99, '2024-03-11', state='inactive')
        self.seed_expense('E6', 99, '2024-02-11')

        result = self.budgets.get_budget_analytics(ALICE, '2024-03')

        self.assertEqual(result['month'], '2024-03')
        self.assertEqual(result['total_budget'], 150)
        self.assertEqual(result['total_spent'], 100)
        self.assertEqual(result['remaining'], 50)
        self.assertAlmostEqual(result['percentage_used'], 100 / 150 * 100)

        by_category = {c['category_id']: c for c in result['by_category']}
        self.assertEqual(by_category['cat-1']['category_name'], 'Food')
        self.assertEqual(by_category['cat-1']['spent_amount'], 60)
        self.assertEqual(by_category['cat-1']['remaining'], -10)
        self.assertAlmostEqual(by_category['cat-1']['percentage_used'], 120)
        self.assertEqual(by_category['cat-2']['spent_amount'], 40)

    def test_budget_analytics_empty_month(self):
        result = self.budgets.get_budget_analytics(ALICE, '2030-01')
        self.assertEqual(result['total_budget'], 0)
        self.assertEqual(result['percentage_used'], 0)
        self.assertEqual(result['by_category'], [])

        with self.assertRaises(status.ValidationException):
            self.budgets.get_budget_analytics(ALICE, 'March')


if __name__ == '__main__':
    unittest.main()
