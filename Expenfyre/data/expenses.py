"""Expense CRUD, categories and receipt files.

Every read starts from the expenses of the caller's groups that are still active; filters
only ever narrow that set. Deletes are soft: the row stays with ``status`` set to
``inactive``.
"""

import base64
import binascii
import dataclasses
import logging
import math
import mimetypes
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from werkzeug.utils import secure_filename

from .groups import GroupsService
from .model import ACTIVE, INACTIVE, Category, Expense, is_date, iter_records, make_id
from ..core.database import now_str
from ..core.service import SheetsClient
from ..core.session import SessionStore
from ..settings.lib import Settings
from ..status import status

MAX_RECEIPT_URL_LENGTH = 50000
DEFAULT_PAGE_SIZE = 20

ALLOWED_FILE_TYPES = ('image/', 'application/pdf')

# Image types that can carry script
BLOCKED_FILE_TYPES = ('image/svg+xml',)

DATA_URL_RE = re.compile(r'^data:(?P<mimetype>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$', re.DOTALL)

EDITABLE_FIELDS = ('category_id', 'budget_id', 'amount', 'description', 'date', 'receipt_url', 'tags')


def parse_amount(value: Any, field: str = 'amount') -> float:
    """Parse a request amount.

    Raises:
        status.ValidationException: If ``value`` is not a finite number.
    """
    if isinstance(value, bool):
        raise status.ValidationException(f'"{field}" must be a number.')
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise status.ValidationException(f'"{field}" must be a number.') from None
    if not math.isfinite(amount):
        raise status.ValidationException(f'"{field}" must be a finite number.')
    return amount


def join_tags(value: Any) -> str:
    """Tags are stored comma-joined. Accepts a list or an already joined string."""
    if value is None:
        return ''
    if isinstance(value, (list, tuple)):
        return ','.join(str(t).strip() for t in value if str(t).strip())
    return str(value).strip()


@dataclass
class ExpenseFilters:
    """Optional filters for :meth:`ExpensesService.query`. Unset filters match everything."""
    category_id: Optional[str] = None
    budget_id: Optional[str] = None
    group_id: Optional[str] = None
    month: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    tags: Optional[str] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    status: Optional[str] = None

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> 'ExpenseFilters':
        """Build filters from query-string arguments, ignoring empty values."""
        values: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            value = args.get(f.name)
            if value in (None, ''):
                continue
            if f.name in ('min_amount', 'max_amount'):
                value = parse_amount(value, f.name)
            values[f.name] = value
        return cls(**values)

    def matches(self, expense: Expense) -> bool:
        if self.category_id and expense.category_id != self.category_id:
            return False
        if self.budget_id and expense.budget_id != self.budget_id:
            return False
        if self.group_id and expense.group_id != self.group_id:
            return False
        if self.month and expense.month != self.month:
            return False
        if self.date_from and expense.date < self.date_from:
            return False
        if self.date_to and expense.date > self.date_to:
            return False
        if self.tags and self.tags.lower() not in expense.tags.lower():
            return False
        if self.min_amount is not None and expense.amount < self.min_amount:
            return False
        if self.max_amount is not None and expense.amount > self.max_amount:
            return False
        if self.status and expense.status != self.status:
            return False
        return True


class ExpensesService:
    """Reads and writes the ``Expenses`` worksheet on behalf of a signed-in user.

    Args:
        settings: Service settings (upload limits and file lifetime).
        sheets: The spreadsheet repository.
        groups: Group membership lookups.
        sessions: Session store holding uploaded receipt files.
    """

    def __init__(self, settings: Settings, sheets: SheetsClient, groups: GroupsService,
                 sessions: SessionStore) -> None:
        self.settings = settings
        self.sheets = sheets
        self.groups = groups
        self.sessions = sessions

    def _rows(self) -> Tuple[List[Any], List[Tuple[int, Expense]]]:
        rows = self.sheets.get_rows(Expense.TAB)
        return (rows[0] if rows else Expense.COLUMNS), list(iter_records(Expense, rows))

    def _visible(self, email: str) -> Tuple[List[Any], List[Tuple[int, Expense]]]:
        """Active expenses of the caller's groups, with their sheet row numbers."""
        group_ids = self.groups.get_user_group_ids(email)
        if not group_ids:
            return Expense.COLUMNS, []
        header, expenses = self._rows()
        return header, [(n, e) for n, e in expenses if e.group_id in group_ids and e.status == ACTIVE]

    def query(self, email: str, filters: Optional[ExpenseFilters] = None) -> List[Expense]:
        """All visible expenses matching ``filters``, in sheet order."""
        filters = filters or ExpenseFilters()
        _, visible = self._visible(email)
        return [e for _, e in visible if filters.matches(e)]

    def list_expenses(self, email: str, filters: Optional[ExpenseFilters] = None,
                      page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        """One page of :meth:`query` results.

        Returns:
            dict: ``expenses``, ``total``, ``page`` and ``totalPages``.
        """
        if page < 1 or limit < 1:
            raise status.ValidationException('"page" and "limit" must be positive.')

        expenses = self.query(email, filters)
        start = (page - 1) * limit
        return {
            'expenses': expenses[start:start + limit],
            'total': len(expenses),
            'page': page,
            'totalPages': math.ceil(len(expenses) / limit),
        }

    def get_expense(self, email: str, expense_id: str) -> Optional[Expense]:
        _, visible = self._visible(email)
        return next((e for _, e in visible if e.expense_id == expense_id), None)

    def create_expense(self, email: str, data: Mapping[str, Any]) -> Expense:
        """Record a new expense.

        Args:
            email: The acting user.
            data: ``category_id``, ``amount`` and ``date`` are required. Optional:
                ``description``, ``budget_id``, ``group_id``, ``receipt_url``, ``tags``.

        Raises:
            status.ValidationException: On missing or invalid fields.
            status.GroupNotFoundException: If ``group_id`` is not one of the caller's groups.
        """
        missing = [k for k in ('category_id', 'amount', 'date') if data.get(k) in (None, '')]
        if missing:
            raise status.ValidationException(f'Missing required fields: {", ".join(missing)}')
        if not is_date(str(data['date'])):
            raise status.ValidationException('"date" must be a YYYY-MM-DD date.')

        timestamp = now_str()
        expense = Expense(
            expense_id=make_id('EXP', 4, upper=True),
            category_id=str(data['category_id']),
            user_id=email,
            group_id=self.groups.resolve_group_id(email, data.get('group_id')),
            budget_id=str(data.get('budget_id') or ''),
            amount=parse_amount(data['amount']),
            description=str(data.get('description') or ''),
            date=str(data['date']),
            receipt_url=str(data.get('receipt_url') or '')[:MAX_RECEIPT_URL_LENGTH],
            tags=join_tags(data.get('tags')),
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.sheets.append_row(Expense.TAB, expense.to_row())
        logging.info(f'Expense {expense.expense_id} created by {email}')
        return expense

    def update_expense(self, email: str, expense_id: str, patch: Mapping[str, Any]) -> Optional[Expense]:
        """Apply ``patch`` to a visible expense.

        Only the editable fields are taken from ``patch``; the month follows the date.

        Returns:
            Expense: The updated expense, or None if it is not visible to the caller.
        """
        header, visible = self._visible(email)
        found = next(((n, e) for n, e in visible if e.expense_id == expense_id), None)
        if found is None:
            return None

        changes: Dict[str, Any] = {}
        for key in EDITABLE_FIELDS:
            if key not in patch or patch[key] is None:
                continue
            value = patch[key]
            if key == 'amount':
                value = parse_amount(value)
            elif key == 'date':
                if not is_date(str(value)):
                    raise status.ValidationException('"date" must be a YYYY-MM-DD date.')
                value = str(value)
            elif key == 'tags':
                value = join_tags(value)
            elif key == 'receipt_url':
                value = str(value)[:MAX_RECEIPT_URL_LENGTH]
            else:
                value = str(value)
            changes[key] = value

        row_number, expense = found
        expense = dataclasses.replace(expense, **changes, updated_at=now_str())
        self.sheets.update_row(Expense.TAB, row_number, expense.to_row(header))
        logging.info(f'Expense {expense_id} updated by {email}')
        return expense

    def delete_expense(self, email: str, expense_id: str) -> bool:
        """Soft-delete a visible expense. Returns False if it is not visible to the caller."""
        header, visible = self._visible(email)
        found = next(((n, e) for n, e in visible if e.expense_id == expense_id), None)
        if found is None:
            return False

        row_number, expense = found
        expense = dataclasses.replace(expense, status=INACTIVE, updated_at=now_str())
        self.sheets.update_row(Expense.TAB, row_number, expense.to_row(header))
        logging.info(f'Expense {expense_id} deleted by {email}')
        return True

    def get_categories(self) -> List[Category]:
        return [c for _, c in iter_records(Category, self.sheets.get_rows(Category.TAB))]

    def upload_receipt(self, email: str, filename: str, mimetype: str, data: bytes) -> Dict[str, Any]:
        """Store a receipt image or PDF and return where it can be fetched.

        Raises:
            status.FileInvalidException: If the file is empty, too large or of a disallowed type.
        """
        mimetype = (mimetype or '').lower()
        if not mimetype.startswith(ALLOWED_FILE_TYPES) or mimetype.startswith(BLOCKED_FILE_TYPES):
            raise status.FileInvalidException('Only images and PDF files are allowed.')
        if not data:
            raise status.FileInvalidException('The file is empty.')
        if len(data) > self.settings.upload_max_bytes:
            limit_mb = self.settings.upload_max_bytes // (1024 * 1024)
            raise status.FileInvalidException(f'File size must be less than {limit_mb}MB.')

        ext = ''
        if filename and '.' in filename:
            ext = secure_filename(filename.rsplit('.', 1)[-1]).lower()
        if not ext:
            ext = (mimetypes.guess_extension(mimetype) or '.bin').lstrip('.')

        name = secure_filename(f'receipt_{email.replace("@", "_at_")}_{int(time.time() * 1000)}.{ext}')
        data_url = f'data:{mimetype};base64,{base64.b64encode(data).decode("ascii")}'
        self.sessions.store_file(name, data_url, ttl=self.settings.file_ttl)

        logging.info(f'Receipt "{name}" uploaded by {email} ({len(data)} bytes)')
        return {
            'url': f'{self.settings.api_base_url.rstrip("/")}/api/file/{name}',
            'filename': name,
            'size': len(data),
            'type': mimetype,
        }

    def load_receipt(self, name: str) -> Tuple[str, bytes]:
        """Return ``(mimetype, content)`` of an uploaded receipt.

        Raises:
            status.FileNotFoundException: If the file is unknown, expired or unreadable.
        """
        data_url = self.sessions.load_file(name)
        if data_url is None:
            raise status.FileNotFoundException(name)

        match = DATA_URL_RE.match(data_url)
        if not match:
            raise status.FileNotFoundException(f'{name} is not a valid data URL.')
        try:
            content = base64.b64decode(match.group('payload'), validate=True)
        except (binascii.Error, ValueError) as ex:
            raise status.FileNotFoundException(f'{name} could not be decoded.') from ex
        return match.group('mimetype'), content
