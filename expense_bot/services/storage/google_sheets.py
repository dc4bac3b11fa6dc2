"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the durable backend because:
1. Users can view and edit their expenses directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for personal expense tracking)
- No transactions (each write is a single append or cell update)
- Limited query capabilities (we filter in Python)

One spreadsheet serves every tenant; each row carries its user_id and every
read filters on it. gspread is synchronous, so every sheet call runs in a
worker thread to keep the event loop free for other users' sessions.

CRITICAL: Reads are retried with tenacity. Writes that commit a
transaction are NOT retried: an append that timed out may still have
landed, and retrying it would record the expense twice.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from expense_bot.config import GoogleSheetsSettings, get_settings
from expense_bot.models.audit import AuditEvent
from expense_bot.models.finance import (
    Category,
    Project,
    ProjectStatus,
    Transaction,
    TransactionRecord,
    TransactionSource,
    TransactionType,
)
from expense_bot.services.errors import ErrorKind
from expense_bot.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from expense_bot.services.storage.memory import default_categories


logger = structlog.get_logger(__name__)


PROJECT_COLUMNS = [
    "id",
    "user_id",
    "name",
    "currency",
    "status",
    "created_at",
]

CATEGORY_COLUMNS = [
    "id",
    "user_id",
    "name",
    "type",
    "emoji",
]

TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "project_id",
    "created_at",
    "type",
    "transaction_date",
    "description",
    "category",
    "category_id",
    "amount",
    "source",
    "items_count",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.kind.is_transient


# Applied to reads only
retry_reads = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and lazily creates missing worksheets with
    their header row.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_projects_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.projects_sheet_name, PROJECT_COLUMNS)

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.categories_sheet_name, CATEGORY_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsFinanceStore(FinanceStoreInterface):
    """
    Google Sheets implementation of the finance store.

    Projects, categories and transactions each live in their own worksheet,
    one entity per row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _project_to_row(self, project: Project) -> list:
        return [
            str(project.id),
            project.user_id,
            project.name,
            project.currency,
            project.status.value,
            project.created_at.isoformat(),
        ]

    def _row_to_project(self, row: list) -> Project:
        return Project(
            id=UUID(_safe_get(row, 0)),
            user_id=_safe_get(row, 1),
            name=_safe_get(row, 2),
            currency=_safe_get(row, 3),
            status=ProjectStatus(_safe_get(row, 4, ProjectStatus.OPEN.value)),
            created_at=datetime.fromisoformat(_safe_get(row, 5)),
        )

    def _row_to_category(self, row: list) -> Category:
        return Category(
            id=_safe_get(row, 0),
            name=_safe_get(row, 2),
            type=TransactionType(_safe_get(row, 3)),
            emoji=_safe_get(row, 4),
        )

    def _transaction_to_row(self, transaction: Transaction) -> list:
        record = transaction.record
        return [
            str(transaction.id),
            transaction.user_id,
            str(transaction.project_id) if transaction.project_id else "",
            transaction.created_at.isoformat(),
            record.type.value,
            record.transaction_date.isoformat(),
            record.description,
            record.category,
            record.category_id or "",
            str(record.amount),
            record.source.value,
            str(record.items_count),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        return Transaction(
            id=UUID(_safe_get(row, 0)),
            user_id=_safe_get(row, 1),
            project_id=UUID(_safe_get(row, 2)) if _safe_get(row, 2) else None,
            created_at=datetime.fromisoformat(_safe_get(row, 3)),
            record=TransactionRecord(
                type=TransactionType(_safe_get(row, 4)),
                transaction_date=date.fromisoformat(_safe_get(row, 5)),
                description=_safe_get(row, 6),
                category=_safe_get(row, 7, "other"),
                category_id=_safe_get(row, 8) or None,
                amount=Decimal(_safe_get(row, 9)),
                source=TransactionSource(_safe_get(row, 10, TransactionSource.MANUAL.value)),
                items_count=int(_safe_get(row, 11, "0")),
            ),
        )

    async def _read_rows(self, get_sheet) -> list[list]:
        """Fetch all data rows (header excluded) of a worksheet."""
        def read() -> list[list]:
            return get_sheet().get_all_values()[1:]

        try:
            return await asyncio.to_thread(read)
        except StorageError:
            raise
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Sheets API error: {e}")
        except Exception as e:
            raise StorageError(f"Failed to read sheet: {e}", ErrorKind.UNKNOWN)

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    @retry_reads
    async def list_projects(
        self,
        user_id: str,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        """List a user's projects ordered by name."""
        rows = await self._read_rows(self._client.get_projects_sheet)

        projects = []
        for row in rows:
            if not row or _safe_get(row, 1) != user_id:
                continue
            try:
                project = self._row_to_project(row)
            except Exception:
                logger.warning("malformed_project_row", row_id=_safe_get(row, 0))
                continue
            if status is not None and project.status != status:
                continue
            projects.append(project)

        projects.sort(key=lambda p: p.name.lower())
        return projects

    async def create_project(
        self,
        user_id: str,
        name: str,
        currency: str,
    ) -> Project:
        """Append a new open project row."""
        existing = await self.list_projects(user_id)
        if any(p.name.lower() == name.strip().lower() for p in existing):
            raise DuplicateError(f"Project already exists: {name}")

        project = Project(user_id=user_id, name=name, currency=currency)
        row = self._project_to_row(project)
        try:
            await asyncio.to_thread(
                lambda: self._client.get_projects_sheet().append_row(row, value_input_option="RAW")
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save project: {e}")
        return project

    async def set_project_status(
        self,
        user_id: str,
        project_id: UUID,
        status: ProjectStatus,
    ) -> None:
        """Update the status cell of a project row."""
        def update() -> bool:
            sheet = self._client.get_projects_sheet()
            all_rows = sheet.get_all_values()
            for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if row and row[0] == str(project_id) and _safe_get(row, 1) == user_id:
                    sheet.update_cell(idx, PROJECT_COLUMNS.index("status") + 1, status.value)
                    return True
            return False

        try:
            found = await asyncio.to_thread(update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update project: {e}")

        if not found:
            raise NotFoundError(f"Project not found: {project_id}")

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @retry_reads
    async def list_categories(
        self,
        user_id: str,
        category_type: TransactionType,
    ) -> list[Category]:
        """
        List a user's categories of one type.

        Users without category rows get the default set.
        """
        rows = await self._read_rows(self._client.get_categories_sheet)

        categories = []
        for row in rows:
            if not row or _safe_get(row, 1) != user_id:
                continue
            if _safe_get(row, 3) != category_type.value:
                continue
            try:
                categories.append(self._row_to_category(row))
            except Exception:
                logger.warning("malformed_category_row", row_id=_safe_get(row, 0))

        return categories or default_categories(category_type)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def persist_transaction(
        self,
        user_id: str,
        project_id: Optional[UUID],
        record: TransactionRecord,
    ) -> UUID:
        """Append one transaction row. Single attempt, never retried."""
        if project_id is not None:
            projects = await self.list_projects(user_id)
            if not any(p.id == project_id for p in projects):
                raise NotFoundError(f"Project not found: {project_id}")

        transaction = Transaction(
            user_id=user_id,
            project_id=project_id,
            record=record,
        )
        row = self._transaction_to_row(transaction)
        try:
            await asyncio.to_thread(
                lambda: self._client.get_transactions_sheet().append_row(
                    row, value_input_option="RAW"
                )
            )
        except StorageError:
            raise
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Sheets API error: {e}")
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}", ErrorKind.UNKNOWN)
        return transaction.id

    @retry_reads
    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """List a user's transactions with optional filters."""
        rows = await self._read_rows(self._client.get_transactions_sheet)

        transactions = []
        for row in rows:
            if not row or not row[0] or _safe_get(row, 1) != user_id:
                continue
            try:
                transaction = self._row_to_transaction(row)
            except Exception:
                logger.warning("malformed_transaction_row", row_id=_safe_get(row, 0))
                continue

            day = transaction.record.transaction_date
            if date_from and day < date_from:
                continue
            if date_to and day > date_to:
                continue
            if transaction_type and transaction.record.type != transaction_type:
                continue
            transactions.append(transaction)

        transactions.sort(key=lambda t: t.record.transaction_date)
        return transactions


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        row = event.to_sheets_row()
        try:
            await self._append(row)
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _append(self, row: list) -> None:
        await asyncio.to_thread(
            lambda: self._client.get_audit_sheet().append_row(row, value_input_option="RAW")
        )
