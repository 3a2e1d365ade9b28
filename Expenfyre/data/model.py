"""Spreadsheet row mappers.

Each entity is a dataclass that knows its worksheet (``TAB``), its default column order
(``COLUMNS``), how to build itself from a header and a row, and how to write itself back.
Columns are looked up by header name, falling back to the default position when a header
is missing, so reordered sheets keep working.

Cells read back from Sheets can carry a leading apostrophe (text forced by the sheet) or
arrive as date serials; :func:`clean_text` and :func:`clean_date` normalize both.
"""

import dataclasses
import datetime
import enum
import logging
import random
import re
import string
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from ..core.database import now_str

DATE_FORMAT = '%Y-%m-%d'
RECURRING = 'recurring'

ACTIVE = 'active'
INACTIVE = 'inactive'

MONTH_RE = re.compile(r'^\d{4}-\d{2}$')
DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')

R = TypeVar('R', bound='Record')


def google_serial_date_to_iso(serial: float) -> str:
    """Converts a Google Sheets date serial to an ISO 'YYYY-MM-DD' string.

    Args:
        serial: The numeric date serial from Google Sheets.

    Returns:
        str: The date in 'YYYY-MM-DD' format.

    Raises:
        ValueError: If the serial number is out of a plausible range or conversion fails.
    """
    if serial < -20000 or serial > 2958465:
        raise ValueError(f'Serial date "{serial}" is out of supported range.')

    base_date = datetime.datetime(1899, 12, 30)
    try:
        return (base_date + datetime.timedelta(days=int(serial))).strftime(DATE_FORMAT)
    except (OverflowError, ValueError) as e:
        raise ValueError(f'Invalid serial date value {serial}') from e


def clean_text(value: Any) -> str:
    """Return ``value`` as a stripped string without a leading apostrophe."""
    if value is None:
        return ''
    text = str(value).strip()
    if text.startswith("'"):
        text = text[1:]
    return text


def clean_date(value: Any) -> str:
    """Normalize a date cell to 'YYYY-MM-DD' where possible.

    Numeric cells are treated as Google Sheets date serials. Anything else is returned as
    cleaned text.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return google_serial_date_to_iso(float(value))
        except ValueError:
            logging.debug(f'Failed to parse "{value}" as a date serial.')
            return str(value)

    text = clean_text(value)
    if text and not DATE_RE.match(text) and re.fullmatch(r'\d+(\.\d+)?', text):
        try:
            return google_serial_date_to_iso(float(text))
        except ValueError:
            pass
    return text


def clean_month(value: Any) -> str:
    """Normalize a month cell to 'YYYY-MM', passing the ``recurring`` sentinel through."""
    text = clean_date(value)
    if DATE_RE.match(text):
        return text[:7]
    return text


def month_of(value: str) -> str:
    """Return the 'YYYY-MM' prefix of an ISO date or timestamp, or '' if there is none."""
    text = clean_text(value)[:7]
    return text if MONTH_RE.match(text) else ''


def is_month(value: str) -> bool:
    return bool(MONTH_RE.match(value or ''))


def is_date(value: str) -> bool:
    if not DATE_RE.match(value or ''):
        return False
    try:
        datetime.datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


def to_float(value: Any) -> float:
    """Parse a numeric cell, tolerating thousands separators and a currency sign. Returns 0.0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    text = clean_text(value).replace(',', '').lstrip('$')
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        logging.debug(f'Failed to parse "{text}" as a number. Using 0.0.')
        return 0.0


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() == 'true'


def bool_str(value: bool) -> str:
    return 'true' if value else 'false'


def amount_str(value: float) -> str:
    """Format an amount for the sheet without a trailing ``.0`` on whole numbers."""
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def is_active(status_value: str) -> bool:
    """Empty status cells count as active."""
    return status_value in ('', ACTIVE)


def make_id(prefix: str, length: int, upper: bool = False) -> str:
    """Build a randomized id such as ``EXP1705312800000K3F9``.

    Args:
        prefix: Entity prefix, e.g. ``EXP``.
        length: Number of random characters appended after the millisecond timestamp.
        upper: Use upper-case letters instead of lower-case.
    """
    letters = string.ascii_uppercase if upper else string.ascii_lowercase
    suffix = ''.join(random.choices(letters + string.digits, k=length))
    return f'{prefix}{int(time.time() * 1000)}{suffix}'


@dataclass(frozen=True)
class FixedMonth:
    """A budget for exactly one month."""
    month: str

    @property
    def start_month(self) -> str:
        return self.month

    def applies_to(self, month: str) -> bool:
        return self.month == month


@dataclass(frozen=True)
class RecurringFrom:
    """A budget that applies to every month from ``start_month`` onward.

    An empty ``start_month`` (unknown creation date) applies to every month.
    """
    start_month: str

    def applies_to(self, month: str) -> bool:
        return self.start_month <= month


Recurrence = Union[FixedMonth, RecurringFrom]


def derive_recurrence(month: str, recurring: bool, created_at: str) -> Recurrence:
    """Turn the stored month cell and recurring flag into a :data:`Recurrence`.

    Budgets stored with the ``recurring`` sentinel start in the month they were created.
    """
    if month == RECURRING or recurring:
        return RecurringFrom(month if is_month(month) else month_of(created_at))
    return FixedMonth(month)


class Record:
    """Base class of the spreadsheet row dataclasses."""
    TAB: ClassVar[str] = ''
    COLUMNS: ClassVar[List[str]] = []

    @classmethod
    def cells(cls, header: Sequence[Any], row: Sequence[Any]) -> Dict[str, Any]:
        """Map ``row`` to ``{column: raw value}`` using ``header``, falling back to ``COLUMNS``."""
        names = [clean_text(h) for h in header]
        result = {}
        for pos, column in enumerate(cls.COLUMNS):
            if column in names:
                idx = names.index(column)
            elif pos >= len(names) or names[pos] not in cls.COLUMNS:
                # Unnamed or unknown header, use the default position
                idx = pos
            else:
                result[column] = None
                continue
            result[column] = row[idx] if idx < len(row) else None
        return result

    @classmethod
    def from_cells(cls: Type[R], cells: Dict[str, Any]) -> R:
        raise NotImplementedError

    @classmethod
    def from_row(cls: Type[R], header: Sequence[Any], row: Sequence[Any]) -> R:
        return cls.from_cells(cls.cells(header, row))

    def values(self) -> Dict[str, str]:
        """The record's sheet cells as strings, keyed by column."""
        raise NotImplementedError

    def to_row(self, header: Optional[Sequence[Any]] = None) -> List[Optional[str]]:
        """Serialize the record for writing.

        Args:
            header: The sheet's header row. Defaults to ``COLUMNS``.

        Returns:
            list: Cells in header order. Cells under headers this record does not know are
            None, which the Sheets API leaves untouched on update.
        """
        values = self.values()
        names = [clean_text(h) for h in header] if header else list(self.COLUMNS)
        row = []
        for pos, name in enumerate(names):
            if name in values:
                row.append(values[name])
            elif pos < len(self.COLUMNS) and self.COLUMNS[pos] not in names:
                row.append(values[self.COLUMNS[pos]])
            else:
                row.append(None)
        # Columns past the end of a short header are written by position
        for pos in range(len(names), len(self.COLUMNS)):
            column = self.COLUMNS[pos]
            row.append(None if column in names else values[column])
        return row

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self) if f.repr}


def iter_records(cls: Type[R], rows: Sequence[Sequence[Any]]) -> Iterator[Tuple[int, R]]:
    """Yield ``(sheet_row_number, record)`` for each data row of a worksheet read.

    Blank rows are skipped. Row numbers are 1-based, so the first data row is 2.
    """
    if not rows:
        return
    header = rows[0]
    for idx, row in enumerate(rows[1:], start=2):
        if not row or not any(clean_text(c) for c in row):
            continue
        yield idx, cls.from_row(header, row)


@dataclass
class User(Record):
    TAB: ClassVar[str] = 'Users'
    COLUMNS: ClassVar[List[str]] = [
        'user_id', 'google_id', 'email', 'name', 'avatar_url', 'currency', 'timezone', 'created_at',
        'default_group_id',
    ]

    user_id: str
    email: str
    name: str = ''
    google_id: str = ''
    avatar_url: str = ''
    currency: str = 'USD'
    timezone: str = 'UTC'
    created_at: str = ''
    default_group_id: str = ''

    @classmethod
    def from_cells(cls, cells):
        return cls(
            user_id=clean_text(cells['user_id']),
            email=clean_text(cells['email']),
            name=clean_text(cells['name']),
            google_id=clean_text(cells['google_id']),
            avatar_url=clean_text(cells['avatar_url']),
            currency=clean_text(cells['currency']) or 'USD',
            timezone=clean_text(cells['timezone']) or 'UTC',
            created_at=clean_text(cells['created_at']),
            default_group_id=clean_text(cells['default_group_id']),
        )

    def values(self):
        return {c: str(getattr(self, c)) for c in self.COLUMNS}

    def to_dict(self) -> Dict[str, Any]:
        """The user as exposed by the API and cached in the session store."""
        return {
            'id': self.user_id,
            'email': self.email,
            'name': self.name,
            'picture': self.avatar_url,
            'currency': self.currency,
            'timezone': self.timezone,
            'created_at': self.created_at,
            'default_group_id': self.default_group_id or None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            user_id=data.get('id') or '',
            email=data['email'],
            name=data.get('name') or '',
            avatar_url=data.get('picture') or '',
            currency=data.get('currency') or 'USD',
            timezone=data.get('timezone') or 'UTC',
            created_at=data.get('created_at') or '',
            default_group_id=data.get('default_group_id') or '',
        )


@dataclass
class Category(Record):
    TAB: ClassVar[str] = 'Categories'
    COLUMNS: ClassVar[List[str]] = ['category_id', 'name', 'icon', 'color', 'is_default', 'created_at']

    category_id: str
    name: str
    icon: str = ''
    color: str = ''
    is_default: bool = False
    created_at: str = ''

    @classmethod
    def from_cells(cls, cells):
        return cls(
            category_id=clean_text(cells['category_id']),
            name=clean_text(cells['name']),
            icon=clean_text(cells['icon']),
            color=clean_text(cells['color']),
            is_default=to_bool(cells['is_default']),
            created_at=clean_text(cells['created_at']),
        )

    def values(self):
        return {
            'category_id': self.category_id,
            'name': self.name,
            'icon': self.icon,
            'color': self.color,
            'is_default': bool_str(self.is_default),
            'created_at': self.created_at,
        }


@dataclass
class Budget(Record):
    TAB: ClassVar[str] = 'Budgets'
    COLUMNS: ClassVar[List[str]] = [
        'budget_id', 'category_id', 'user_id', 'group_id', 'amount', 'month', 'rollover', 'recurring',
        'status', 'created_at', 'updated_at',
    ]

    budget_id: str
    category_id: str
    user_id: str
    group_id: str
    amount: float
    month: str
    rollover: bool = False
    recurring: bool = False
    status: str = ACTIVE
    created_at: str = ''
    updated_at: str = ''
    recurrence: Recurrence = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.recurrence = derive_recurrence(self.month, self.recurring, self.created_at)

    @classmethod
    def from_cells(cls, cells):
        return cls(
            budget_id=clean_text(cells['budget_id']),
            category_id=clean_text(cells['category_id']),
            user_id=clean_text(cells['user_id']),
            group_id=clean_text(cells['group_id']),
            amount=to_float(cells['amount']),
            month=clean_month(cells['month']),
            rollover=to_bool(cells['rollover']),
            recurring=to_bool(cells['recurring']),
            status=clean_text(cells['status']) or ACTIVE,
            created_at=clean_text(cells['created_at']),
            updated_at=clean_text(cells['updated_at']),
        )

    def values(self):
        return {
            'budget_id': self.budget_id,
            'category_id': self.category_id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'amount': amount_str(self.amount),
            'month': self.month,
            'rollover': bool_str(self.rollover),
            'recurring': bool_str(self.recurring),
            'status': self.status,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    def applies_to(self, month: str) -> bool:
        return self.recurrence.applies_to(month)


@dataclass
class Expense(Record):
    TAB: ClassVar[str] = 'Expenses'
    COLUMNS: ClassVar[List[str]] = [
        'expense_id', 'category_id', 'user_id', 'group_id', 'budget_id', 'amount', 'description', 'date',
        'month', 'receipt_url', 'tags', 'status', 'created_at', 'updated_at',
    ]

    expense_id: str
    category_id: str
    user_id: str
    group_id: str
    amount: float
    date: str
    budget_id: str = ''
    description: str = ''
    month: str = ''
    receipt_url: str = ''
    tags: str = ''
    status: str = ACTIVE
    created_at: str = ''
    updated_at: str = ''

    def __post_init__(self) -> None:
        # month always follows date
        if DATE_RE.match(self.date or ''):
            self.month = self.date[:7]

    @classmethod
    def from_cells(cls, cells):
        return cls(
            expense_id=clean_text(cells['expense_id']),
            category_id=clean_text(cells['category_id']),
            user_id=clean_text(cells['user_id']),
            group_id=clean_text(cells['group_id']),
            budget_id=clean_text(cells['budget_id']),
            amount=to_float(cells['amount']),
            description=clean_text(cells['description']),
            date=clean_date(cells['date']),
            month=clean_month(cells['month']),
            receipt_url=clean_text(cells['receipt_url']),
            tags=clean_text(cells['tags']),
            status=clean_text(cells['status']) or ACTIVE,
            created_at=clean_text(cells['created_at']),
            updated_at=clean_text(cells['updated_at']),
        )

    def values(self):
        return {
            'expense_id': self.expense_id,
            'category_id': self.category_id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'budget_id': self.budget_id,
            'amount': amount_str(self.amount),
            'description': self.description,
            'date': self.date,
            'month': self.month,
            'receipt_url': self.receipt_url,
            'tags': self.tags,
            'status': self.status,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class Group(Record):
    TAB: ClassVar[str] = 'Groups'
    COLUMNS: ClassVar[List[str]] = [
        'group_id', 'name', 'description', 'owner_email', 'created_at', 'updated_at', 'status',
    ]

    group_id: str
    name: str
    owner_email: str
    description: str = ''
    created_at: str = ''
    updated_at: str = ''
    status: str = ACTIVE

    @classmethod
    def from_cells(cls, cells):
        return cls(
            group_id=clean_text(cells['group_id']),
            name=clean_text(cells['name']),
            description=clean_text(cells['description']),
            owner_email=clean_text(cells['owner_email']),
            created_at=clean_text(cells['created_at']),
            updated_at=clean_text(cells['updated_at']),
            status=clean_text(cells['status']) or ACTIVE,
        )

    def values(self):
        return {c: str(getattr(self, c)) for c in self.COLUMNS}


class Role(enum.StrEnum):
    """Group membership roles."""
    Owner = 'owner'
    Admin = 'admin'
    Member = 'member'


MANAGER_ROLES = (Role.Owner, Role.Admin)


@dataclass
class GroupMember(Record):
    TAB: ClassVar[str] = 'Group_Members'
    COLUMNS: ClassVar[List[str]] = ['group_member_id', 'group_id', 'user_email', 'role', 'joined_at', 'status']

    group_member_id: str
    group_id: str
    user_email: str
    role: str = Role.Member
    joined_at: str = ''
    status: str = ACTIVE

    @classmethod
    def from_cells(cls, cells):
        return cls(
            group_member_id=clean_text(cells['group_member_id']),
            group_id=clean_text(cells['group_id']),
            user_email=clean_text(cells['user_email']),
            role=clean_text(cells['role']) or Role.Member,
            joined_at=clean_text(cells['joined_at']),
            status=clean_text(cells['status']) or ACTIVE,
        )

    def values(self):
        return {c: str(getattr(self, c)) for c in self.COLUMNS}


@dataclass
class AccessRequest(Record):
    TAB: ClassVar[str] = 'Access Request'
    COLUMNS: ClassVar[List[str]] = [
        'request_id', 'google_id', 'email', 'name', 'avatar_url', 'preferred_currency', 'timezone', 'status',
        'requested_at',
    ]

    request_id: str
    email: str
    name: str = ''
    google_id: str = ''
    avatar_url: str = ''
    preferred_currency: str = 'USD'
    timezone: str = 'UTC'
    status: str = 'pending'
    requested_at: str = field(default_factory=now_str)

    @classmethod
    def from_cells(cls, cells):
        return cls(**{c: clean_text(cells[c]) for c in cls.COLUMNS})

    def values(self):
        return {c: str(getattr(self, c)) for c in self.COLUMNS}
