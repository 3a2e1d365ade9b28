"""
Data package: spreadsheet row models and the services built on them.

- :mod:`Expenfyre.data.model` – Row mappers for users, categories, budgets, expenses, groups and members.
- :mod:`Expenfyre.data.groups` – Group membership and access control.
- :mod:`Expenfyre.data.expenses` – Expense CRUD, categories and receipt files.
- :mod:`Expenfyre.data.budgets` – Budget CRUD and per-month budget analytics.
- :mod:`Expenfyre.data.analytics` – pandas aggregations for the analytics endpoints.
"""
