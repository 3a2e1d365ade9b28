"""Budget CRUD and per-month budget analytics.

A budget is either for one month or recurring. Recurring budgets are stored with the month
cell set to ``recurring`` and apply to every month from the month they were created; see
:class:`Expenfyre.data.model.RecurringFrom`.
"""

import dataclasses
import datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .expenses import ExpenseFilters, ExpensesService, parse_amount
from .groups import GroupsService
from .model import ACTIVE, INACTIVE, RECURRING, Budget, is_month, iter_records, make_id, to_bool
from ..core.database import now_str
from ..core.service import SheetsClient
from ..status import status


def current_month() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime('%Y-%m')


def percentage(part: float, whole: float) -> float:
    """``part`` as a percentage of ``whole``; 0 when ``whole`` is 0."""
    return (part / whole) * 100 if whole else 0.0


class BudgetsService:
    """Reads and writes the ``Budgets`` worksheet on behalf of a signed-in user.

    Args:
        sheets: The spreadsheet repository.
        groups: Group membership lookups.
        expenses: Used to total spending against budgets.
    """

    def __init__(self, sheets: SheetsClient, groups: GroupsService, expenses: ExpensesService) -> None:
        self.sheets = sheets
        self.groups = groups
        self.expenses = expenses

    def _visible(self, email: str) -> Tuple[List[Any], List[Tuple[int, Budget]]]:
        """Active budgets of the caller's groups, with their sheet row numbers."""
        group_ids = self.groups.get_user_group_ids(email)
        if not group_ids:
            return Budget.COLUMNS, []
        rows = self.sheets.get_rows(Budget.TAB)
        header = rows[0] if rows else Budget.COLUMNS
        budgets = [
            (n, b) for n, b in iter_records(Budget, rows)
            if b.group_id in group_ids and b.status == ACTIVE
        ]
        return header, budgets

    def _find(self, email: str, budget_id: str) -> Tuple[List[Any], int, Budget]:
        header, visible = self._visible(email)
        found = next(((n, b) for n, b in visible if b.budget_id == budget_id), None)
        if found is None:
            raise status.BudgetNotFoundException(budget_id)
        return header, found[0], found[1]

    def query(self, email: str, category_id: Optional[str] = None, month: Optional[str] = None,
              group_id: Optional[str] = None) -> List[Budget]:
        """Visible budgets, optionally limited to a category, a group, or those applying to a month."""
        _, visible = self._visible(email)
        budgets = [b for _, b in visible]
        if category_id:
            budgets = [b for b in budgets if b.category_id == category_id]
        if month:
            budgets = [b for b in budgets if b.applies_to(month)]
        if group_id:
            budgets = [b for b in budgets if b.group_id == group_id]
        return budgets

    def list_budgets(self, email: str, filters: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        filters = filters or {}
        budgets = self.query(
            email,
            category_id=filters.get('category_id') or None,
            month=filters.get('month') or None,
            group_id=filters.get('group_id') or None,
        )
        return {'budgets': budgets, 'total': len(budgets), 'page': 1, 'totalPages': 1}

    def create_budget(self, email: str, data: Mapping[str, Any]) -> Budget:
        """Create a budget.

        Args:
            email: The acting user.
            data: ``category_id`` and ``amount`` are required, and ``month`` unless
                ``recurring`` is set. Optional: ``rollover``, ``recurring``, ``group_id``.

        Raises:
            status.ValidationException: On missing or invalid fields.
            status.GroupNotFoundException: If ``group_id`` is not one of the caller's groups.
        """
        missing = [k for k in ('category_id', 'amount') if data.get(k) in (None, '')]
        if missing:
            raise status.ValidationException(f'Missing required fields: {", ".join(missing)}')

        recurring = to_bool(data.get('recurring', False))
        month = str(data.get('month') or '')
        if not recurring and not is_month(month):
            raise status.ValidationException('"month" must be a YYYY-MM month.')

        timestamp = now_str()
        budget = Budget(
            budget_id=make_id('BUD', 4, upper=True),
            category_id=str(data['category_id']),
            user_id=email,
            group_id=self.groups.resolve_group_id(email, data.get('group_id')),
            amount=parse_amount(data['amount']),
            month=RECURRING if recurring else month,
            rollover=to_bool(data.get('rollover', False)),
            recurring=recurring,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.sheets.append_row(Budget.TAB, budget.to_row())
        logging.info(f'Budget {budget.budget_id} created by {email}')
        return budget

    def update_budget(self, email: str, budget_id: str, patch: Mapping[str, Any]) -> Budget:
        """Update a visible budget's category, amount, month, rollover or recurring flag.

        Turning a recurring budget into a one-month budget without giving a month pins it to
        the month it started in.

        Raises:
            status.BudgetNotFoundException: If the budget is not visible to the caller.
            status.ValidationException: On invalid values.
        """
        header, row_number, budget = self._find(email, budget_id)

        changes: Dict[str, Any] = {}
        if patch.get('category_id'):
            changes['category_id'] = str(patch['category_id'])
        if patch.get('amount') is not None:
            changes['amount'] = parse_amount(patch['amount'])
        if patch.get('rollover') is not None:
            changes['rollover'] = to_bool(patch['rollover'])

        recurring = to_bool(patch['recurring']) if patch.get('recurring') is not None else budget.recurring
        if recurring:
            month = RECURRING
        elif patch.get('month'):
            month = str(patch['month'])
        elif budget.month == RECURRING:
            month = budget.recurrence.start_month or current_month()
        else:
            month = budget.month
        if month != RECURRING and not is_month(month):
            raise status.ValidationException('"month" must be a YYYY-MM month.')
        changes['recurring'] = recurring
        changes['month'] = month

        budget = dataclasses.replace(budget, **changes, updated_at=now_str())
        self.sheets.update_row(Budget.TAB, row_number, budget.to_row(header))
        logging.info(f'Budget {budget_id} updated by {email}')
        return budget

    def delete_budget(self, email: str, budget_id: str) -> None:
        """Soft-delete a visible budget.

        Raises:
            status.BudgetNotFoundException: If the budget is not visible to the caller.
        """
        header, row_number, budget = self._find(email, budget_id)
        budget = dataclasses.replace(budget, status=INACTIVE, updated_at=now_str())
        self.sheets.update_row(Budget.TAB, row_number, budget.to_row(header))
        logging.info(f'Budget {budget_id} deleted by {email}')

    def get_budget_analytics(self, email: str, month: Optional[str] = None) -> Dict[str, Any]:
        """Budget against spending per category for one month.

        Args:
            email: The acting user.
            month: 'YYYY-MM'. Defaults to the current month.

        Returns:
            dict: ``month``, ``total_budget``, ``total_spent``, ``remaining``,
            ``percentage_used`` and ``by_category``.
        """
        month = month or current_month()
        if not is_month(month):
            raise status.ValidationException('"month" must be a YYYY-MM month.')

        budgets = self.query(email, month=month)
        expenses = self.expenses.query(email, ExpenseFilters(month=month))
        names = {c.category_id: c.name for c in self.expenses.get_categories()}

        spent_by_category: Dict[str, float] = {}
        for expense in expenses:
            spent_by_category[expense.category_id] = spent_by_category.get(expense.category_id, 0.0) + expense.amount

        budget_by_category: Dict[str, float] = {}
        for budget in budgets:
            budget_by_category[budget.category_id] = budget_by_category.get(budget.category_id, 0.0) + budget.amount

        by_category = []
        for category_id, budget_amount in budget_by_category.items():
            spent = spent_by_category.get(category_id, 0.0)
            by_category.append({
                'category_id': category_id,
                'category_name': names.get(category_id, 'Unknown'),
                'budget_amount': budget_amount,
                'spent_amount': spent,
                'remaining': budget_amount - spent,
                'percentage_used': percentage(spent, budget_amount),
            })

        total_budget = sum(budget_by_category.values())
        total_spent = sum(e.amount for e in expenses)
        return {
            'month': month,
            'total_budget': total_budget,
            'total_spent': total_spent,
            'remaining': total_budget - total_spent,
            'percentage_used': percentage(total_spent, total_budget),
            'by_category': by_category,
        }
