"""Analytics over the caller's visible expenses and budgets.

Each operation loads the active expenses and budgets of the caller's groups through the
expense and budget services, aggregates them with pandas, and returns JSON-ready lists and
dicts. Percentages are 0 when their denominator is 0. Recurring budgets count towards every
month from their start month onward.
"""

import datetime
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from statsmodels.nonparametric.smoothers_lowess import lowess

from .budgets import BudgetsService, percentage
from .expenses import ExpenseFilters, ExpensesService
from .model import Budget, Expense, clean_text, is_month
from ..status import status

LOESS_FRACTION = 0.5
NEAR_BUDGET_PERCENTAGE = 80
OVER_BUDGET_PERCENTAGE = 100
MAX_MONTHS = 60


def _conform_amount_column(df: pd.DataFrame) -> pd.DataFrame:
    """Ensure the amount column is numeric, with unparsable values as 0."""
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    return df


def _conform_date_column(df: pd.DataFrame) -> pd.DataFrame:
    """Strip sheet apostrophes from dates and derive the month from the date."""
    df['date'] = df['date'].map(clean_text)
    df['month'] = df['date'].astype(str).str[:7]
    return df


def _expense_frame(expenses: List[Expense]) -> pd.DataFrame:
    df = pd.DataFrame(
        [e.to_dict() for e in expenses],
        columns=['expense_id', 'category_id', 'description', 'amount', 'date', 'month'],
    )
    return (
        df
        .pipe(_conform_amount_column)
        .pipe(_conform_date_column)
    )


def _budget_total(budgets: List[Budget], month: str) -> Dict[str, Any]:
    applicable = [b for b in budgets if b.applies_to(month)]
    return {'total': float(sum(b.amount for b in applicable)), 'count': len(applicable)}


def utilization_status(utilization: float) -> str:
    """Bucket a utilization percentage into ``over``, ``near`` or ``under``."""
    if utilization >= OVER_BUDGET_PERCENTAGE:
        return 'over'
    if utilization >= NEAR_BUDGET_PERCENTAGE:
        return 'near'
    return 'under'


class AnalyticsService:
    """Aggregations behind the ``/api/analytics`` endpoints.

    Args:
        expenses: Expense queries, already restricted to the caller's groups.
        budgets: Budget queries, already restricted to the caller's groups.
        today: Callable returning the current date; month windows end at its month.
    """

    def __init__(self, expenses: ExpensesService, budgets: BudgetsService,
                 today: Optional[Callable[[], datetime.date]] = None) -> None:
        self.expenses = expenses
        self.budgets = budgets
        self.today = today or (lambda: datetime.datetime.now(datetime.timezone.utc).date())

    def current_month(self) -> str:
        return self.today().strftime('%Y-%m')

    def trailing_months(self, months: int) -> List[str]:
        """The last ``months`` months ending with the current one, oldest first."""
        if not 1 <= months <= MAX_MONTHS:
            raise status.ValidationException(f'"months" must be between 1 and {MAX_MONTHS}.')
        periods = pd.period_range(end=pd.Period(self.current_month(), freq='M'), periods=months, freq='M')
        return [p.strftime('%Y-%m') for p in periods]

    def _category_names(self) -> Dict[str, str]:
        return {c.category_id: c.name for c in self.expenses.get_categories()}

    @staticmethod
    def _check_month(month: Optional[str]) -> None:
        if month and not is_month(month):
            raise status.ValidationException('"month" must be a YYYY-MM month.')

    def summary(self, email: str, start_date: Optional[str] = None, end_date: Optional[str] = None,
                category_id: Optional[str] = None, month: Optional[str] = None) -> Dict[str, Any]:
        """Totals, counts and extremes of the caller's spending.

        Expenses are filtered by date range and category; budgets by category and, when
        ``month`` is given, by the month they apply to.
        """
        self._check_month(month)
        expenses = self.expenses.query(
            email, ExpenseFilters(category_id=category_id, date_from=start_date, date_to=end_date)
        )
        budgets = self.budgets.query(email, category_id=category_id, month=month)

        df = _expense_frame(expenses)
        total_expenses = float(df['amount'].sum())
        total_budget = float(sum(b.amount for b in budgets))
        count = len(df)

        frequency = df.groupby('category_id', sort=False).size().sort_values(ascending=False, kind='stable')

        return {
            'total_expenses': total_expenses,
            'total_budget': total_budget,
            'expense_count': count,
            'budget_count': len(budgets),
            'average_expense': total_expenses / count if count else 0.0,
            'largest_expense': float(df['amount'].max()) if count else 0.0,
            'smallest_expense': float(df['amount'].min()) if count else 0.0,
            'most_frequent_category': str(frequency.index[0]) if not frequency.empty else '',
            'budget_utilization': percentage(total_expenses, total_budget),
        }

    def category_breakdown(self, email: str, start_date: Optional[str] = None, end_date: Optional[str] = None,
                           month: Optional[str] = None) -> List[Dict[str, Any]]:
        """Spending per category against the budgets applying to ``month`` (default: now).

        When ``month`` is given, only expenses of that month are counted.
        """
        self._check_month(month)
        target = month or self.current_month()
        expenses = self.expenses.query(
            email, ExpenseFilters(date_from=start_date, date_to=end_date, month=month)
        )
        budgets = [b for b in self.budgets.query(email) if b.applies_to(target)]
        names = self._category_names()

        df = _expense_frame(expenses)
        if df.empty:
            return []

        grand_total = float(df['amount'].sum())
        spending = df.groupby('category_id', sort=False)['amount'].agg(['sum', 'count'])

        budget_by_category: Dict[str, float] = {}
        for budget in budgets:
            budget_by_category[budget.category_id] = budget_by_category.get(budget.category_id, 0.0) + budget.amount

        result = []
        for category_id, row in spending.iterrows():
            total = float(row['sum'])
            budget_amount = budget_by_category.get(category_id, 0.0)
            remaining = budget_amount - total
            result.append({
                'category_id': category_id,
                'category_name': names.get(category_id, 'Unknown'),
                'total_amount': total,
                'expense_count': int(row['count']),
                'percentage': percentage(total, grand_total),
                'budget_amount': budget_amount,
                'remaining': remaining,
                'over_budget': remaining < 0,
            })
        return sorted(result, key=lambda r: r['total_amount'], reverse=True)

    def monthly_comparison(self, email: str, months: int = 6) -> List[Dict[str, Any]]:
        """Spending against budget for each of the last ``months`` months."""
        month_list = self.trailing_months(months)
        df = _expense_frame(self.expenses.query(email))
        budgets = self.budgets.query(email)

        spending = df[df['month'].isin(month_list)].groupby('month')['amount'].agg(['sum', 'count'])

        result = []
        for month in month_list:
            total = float(spending.loc[month, 'sum']) if month in spending.index else 0.0
            count = int(spending.loc[month, 'count']) if month in spending.index else 0
            budget = _budget_total(budgets, month)
            variance = budget['total'] - total
            result.append({
                'month': month,
                'total_expenses': total,
                'total_budget': budget['total'],
                'expense_count': count,
                'budget_count': budget['count'],
                'variance': variance,
                'variance_percentage': percentage(variance, budget['total']),
            })
        return result

    def budget_performance(self, email: str, month: Optional[str] = None) -> List[Dict[str, Any]]:
        """Utilization of every budget applying to ``month`` (default: now), highest first."""
        self._check_month(month)
        target = month or self.current_month()
        budgets = [b for b in self.budgets.query(email) if b.applies_to(target)]
        df = _expense_frame(self.expenses.query(email, ExpenseFilters(month=target)))
        spent = df.groupby('category_id')['amount'].sum()
        names = self._category_names()

        result = []
        for budget in budgets:
            spent_amount = float(spent.get(budget.category_id, 0.0))
            utilization = percentage(spent_amount, budget.amount)
            result.append({
                'budget_id': budget.budget_id,
                'category_id': budget.category_id,
                'category_name': names.get(budget.category_id, 'Unknown'),
                'budget_amount': budget.amount,
                'spent_amount': spent_amount,
                'remaining': budget.amount - spent_amount,
                'utilization_percentage': utilization,
                'status': utilization_status(utilization),
            })
        return sorted(result, key=lambda r: r['utilization_percentage'], reverse=True)

    def top_expenses(self, email: str, limit: int = 10, start_date: Optional[str] = None,
                     end_date: Optional[str] = None, category_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """The ``limit`` largest expenses."""
        if limit < 1:
            raise status.ValidationException('"limit" must be positive.')
        expenses = self.expenses.query(
            email, ExpenseFilters(category_id=category_id, date_from=start_date, date_to=end_date)
        )
        df = _expense_frame(expenses)
        top = df.sort_values('amount', ascending=False, kind='stable').head(limit)
        names = self._category_names()

        return [
            {
                'expense_id': row.expense_id,
                'description': row.description,
                'category_id': row.category_id,
                'category_name': names.get(row.category_id, 'Unknown'),
                'amount': float(row.amount),
                'date': row.date,
            }
            for row in top.itertuples(index=False)
        ]

    def daily_trend(self, email: str, start_date: Optional[str] = None,
                    end_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Daily spending totals, oldest first, with a LOWESS-smoothed curve."""
        df = _expense_frame(self.expenses.query(email, ExpenseFilters(date_from=start_date, date_to=end_date)))
        if df.empty:
            return []

        daily = df.groupby('date')['amount'].agg(['sum', 'count']).sort_index()
        values = daily['sum'].values
        m = len(values)

        if m < 3:
            smoothed = values.copy()
        else:
            x = pd.to_datetime(daily.index, errors='coerce').map(lambda d: d.toordinal() if pd.notna(d) else 0)
            frac = max(LOESS_FRACTION, min(1.0, 3 / m))
            smoothed = lowess(values, list(x), frac=frac, return_sorted=False)
            smoothed = pd.Series(smoothed).fillna(pd.Series(values)).values

        return [
            {
                'date': date,
                'amount': float(total),
                'count': int(count),
                'smoothed': float(smooth),
            }
            for date, total, count, smooth in zip(daily.index, values, daily['count'].values, smoothed)
        ]

    def budget_utilization(self, email: str, months: int = 6) -> List[Dict[str, Any]]:
        """Budget, spending and utilization for each of the last ``months`` months."""
        month_list = self.trailing_months(months)
        df = _expense_frame(self.expenses.query(email))
        budgets = self.budgets.query(email)
        spent = df.groupby('month')['amount'].sum()

        result = []
        for month in month_list:
            budget = _budget_total(budgets, month)['total']
            spent_amount = float(spent.get(month, 0.0))
            result.append({
                'month': month,
                'budget': budget,
                'spent': spent_amount,
                'utilization': percentage(spent_amount, budget),
            })
        return result
