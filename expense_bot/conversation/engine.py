"""
Conversation Engine

Drives guided dialogs one input at a time, walking the step tables in
`flows.py`.

CRITICAL GUARANTEES:
1. The cancellation token is honoured at every step, before validation.
2. Invalid input never advances a dialog; the same prompt is shown again.
3. A dialog's commit runs at most once. The session is ended before the
   commit is awaited and a failed commit is never retried here; the
   user is told which command starts over.
4. Collaborator failures are converted to replies. They never leave a
   half-advanced session behind.

There is exactly one code path that persists a transaction
(`_commit_transaction`). Manual entry and receipt photos both end there.
"""

from typing import Any, Awaitable, Optional, TypeVar

import structlog

from expense_bot import messages
from expense_bot.audit import AuditLogger
from expense_bot.conversation.flows import (
    CLOSE_PROJECT_FLOW,
    CREATE_EXPENSE_FLOW,
    CREATE_INCOME_FLOW,
    CREATE_PROJECT_FLOW,
    FLOWS,
    OPEN_PROJECT_FLOW,
    PROJECT_SELECTION_FLOW,
    CommitAction,
    FlowSpec,
    ProjectOption,
    build_project_options,
    next_step_index,
)
from expense_bot.conversation.store import (
    AlreadyInConversationError,
    ConversationError,
    ConversationStore,
    NoActiveConversationError,
)
from expense_bot.conversation.validators import InvalidStepInput
from expense_bot.models.conversation import FlowKind
from expense_bot.models.finance import (
    MAX_AMOUNT,
    ProjectStatus,
    StructuredReceipt,
    TransactionRecord,
    TransactionSource,
    TransactionType,
)
from expense_bot.services.errors import (
    CollaboratorError,
    ErrorKind,
    PersistenceError,
    with_timeout,
)
from expense_bot.services.storage import FinanceStoreInterface


logger = structlog.get_logger(__name__)

T = TypeVar("T")

GENERAL_LABELS = {
    TransactionType.EXPENSE: "General expenses",
    TransactionType.INCOME: "General income",
}


class ConversationEngine:
    """
    State machine over ConversationStore.

    The engine is the only writer of conversation sessions. Callers
    (the command router) only read them to decide where input goes.
    """

    def __init__(
        self,
        store: ConversationStore,
        finance_store: FinanceStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        cancel_token: str = "/cancel",
        collaborator_timeout: float = 30.0,
        default_currency: str = "$",
    ):
        self._store = store
        self._finance = finance_store
        self._audit = audit_logger
        self._cancel_token = cancel_token.strip().lower()
        self._timeout = collaborator_timeout
        self._default_currency = default_currency
        self._commit_handlers = {
            CommitAction.PERSIST_TRANSACTION: self._commit_transaction_flow,
            CommitAction.CREATE_PROJECT: self._commit_create_project,
            CommitAction.SET_PROJECT_STATUS: self._commit_project_status,
        }

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def is_cancel(self, text: str) -> bool:
        # "/cancel@SomeBot" is what Telegram sends from a command menu
        command = text.strip().lower().split("@", 1)[0]
        return command == self._cancel_token

    def active_flow(self, user_id: str) -> Optional[FlowKind]:
        session = self._store.get(user_id)
        return session.flow_kind if session else None

    async def current_flow(self, user_id: str) -> Optional[FlowKind]:
        """`active_flow`, also auditing any dialog the lookup found expired."""
        kind = self.active_flow(user_id)
        await self._report_expired()
        return kind

    async def _report_expired(self) -> None:
        for session in self._store.drain_expired():
            if self._audit:
                await self._audit.log_conversation_expired(session.user_id, session.flow_kind.value)

    # -------------------------------------------------------------------------
    # Input handling
    # -------------------------------------------------------------------------

    async def handle_input(self, user_id: str, raw_text: str) -> str:
        """
        Apply one user input to the active dialog and return the reply.

        Raises:
            NoActiveConversationError: If the user has no dialog in progress
            ConversationError: If the stored session is past its last step
        """
        session = self._store.get(user_id)
        await self._report_expired()
        if session is None:
            raise NoActiveConversationError(user_id)

        if self.is_cancel(raw_text):
            self._store.end(user_id)
            logger.info(
                "conversation_cancelled",
                user_id=user_id,
                flow_kind=session.flow_kind.value,
                step_index=session.step_index,
            )
            if self._audit:
                await self._audit.log_conversation_cancelled(
                    user_id, session.flow_kind.value, session.step_index
                )
            return messages.CANCELLED

        flow = FLOWS[session.flow_kind]
        if session.step_index >= len(flow.steps):
            self._store.end(user_id)
            raise ConversationError(
                f"{flow.kind.value} for user {user_id} is past its last step"
            )

        step = flow.steps[session.step_index]
        try:
            value = step.parse(raw_text, session.collected_fields)
        except InvalidStepInput as e:
            return f"{e.reason}\n\n{step.prompt(session.collected_fields)}"

        merged = {step.field: value}
        fields = {**session.collected_fields, **merged}
        next_index = next_step_index(flow, session.step_index + 1, fields)

        if next_index >= len(flow.steps):
            # Ended before the commit is awaited: no later input can reach it
            self._store.end(user_id)
            return await self._commit_handlers[flow.commit](user_id, flow, fields)

        self._store.advance(user_id, next_index, merged)
        prompt = flow.steps[next_index].prompt(fields)
        return f"{step.echo(value)}\n\n{prompt}" if step.echo else prompt

    # -------------------------------------------------------------------------
    # Flow starters
    # -------------------------------------------------------------------------

    async def start_expense_flow(self, user_id: str) -> str:
        return await self._start_transaction_flow(
            user_id, CREATE_EXPENSE_FLOW, TransactionType.EXPENSE
        )

    async def start_income_flow(self, user_id: str) -> str:
        return await self._start_transaction_flow(
            user_id, CREATE_INCOME_FLOW, TransactionType.INCOME
        )

    async def start_project_flow(self, user_id: str) -> str:
        self._ensure_idle(user_id)
        return await self._begin(user_id, CREATE_PROJECT_FLOW, {})

    async def start_close_project_flow(self, user_id: str) -> str:
        return await self._start_project_status_flow(
            user_id,
            CLOSE_PROJECT_FLOW,
            current=ProjectStatus.OPEN,
            target=ProjectStatus.CLOSED,
            empty_message=messages.NO_OPEN_PROJECTS,
        )

    async def start_open_project_flow(self, user_id: str) -> str:
        return await self._start_project_status_flow(
            user_id,
            OPEN_PROJECT_FLOW,
            current=ProjectStatus.CLOSED,
            target=ProjectStatus.OPEN,
            empty_message=messages.NO_CLOSED_PROJECTS,
        )

    async def start_receipt_flow(self, user_id: str, receipt: StructuredReceipt) -> str:
        """
        Turn an extracted receipt into an expense.

        With no open projects the expense is committed straight away as a
        general expense; otherwise the user picks a project first.
        """
        self._ensure_idle(user_id)

        if receipt.total <= 0 or receipt.total >= MAX_AMOUNT:
            return messages.RECEIPT_NO_TOTAL

        record = TransactionRecord(
            type=TransactionType.EXPENSE,
            transaction_date=receipt.receipt_date,
            description=receipt.store_name,
            category=receipt.category or "other",
            amount=receipt.total,
            source=TransactionSource.RECEIPT,
            items_count=len(receipt.items),
        )

        try:
            projects = await self._call(self._finance.list_open_projects(user_id))
        except CollaboratorError as e:
            await self._load_failed(user_id, "project_lookup_failed", e)
            projects = []

        if not projects:
            return await self._commit_transaction(user_id, PROJECT_SELECTION_FLOW, record, None)

        summary = messages.receipt_summary(
            record.transaction_date.isoformat(),
            record.description,
            record.category,
            record.amount,
        )
        prompt = await self._begin(user_id, PROJECT_SELECTION_FLOW, {
            "record": record,
            "project_options": build_project_options(projects, self._default_currency),
            "has_projects": True,
        })
        return f"{summary}\n\n{prompt}"

    async def _start_transaction_flow(
        self,
        user_id: str,
        flow: FlowSpec,
        transaction_type: TransactionType,
    ) -> str:
        self._ensure_idle(user_id)
        try:
            categories = await self._call(
                self._finance.list_categories(user_id, transaction_type)
            )
            projects = await self._call(self._finance.list_open_projects(user_id))
        except CollaboratorError as e:
            await self._load_failed(user_id, "flow_start_failed", e, flow_kind=flow.kind.value)
            return messages.load_failed(flow.retry_hint)

        if not categories:
            return messages.NO_CATEGORIES

        return await self._begin(user_id, flow, {
            "transaction_type": transaction_type,
            "category_options": categories,
            "project_options": build_project_options(
                projects, self._default_currency, GENERAL_LABELS[transaction_type]
            ),
            "has_projects": bool(projects),
        })

    async def _start_project_status_flow(
        self,
        user_id: str,
        flow: FlowSpec,
        current: ProjectStatus,
        target: ProjectStatus,
        empty_message: str,
    ) -> str:
        self._ensure_idle(user_id)
        try:
            projects = await self._call(self._finance.list_projects(user_id, current))
        except CollaboratorError as e:
            await self._load_failed(user_id, "flow_start_failed", e, flow_kind=flow.kind.value)
            return messages.load_failed(flow.retry_hint)

        if not projects:
            return empty_message

        options = [
            ProjectOption(label=p.name, project_id=p.id, currency=p.currency)
            for p in projects
        ]
        return await self._begin(user_id, flow, {
            "project_options": options,
            "target_status": target,
        })

    async def _load_failed(self, user_id: str, event: str, error: CollaboratorError, **context: Any) -> None:
        logger.warning(event, user_id=user_id, kind=error.kind.value, error=str(error), **context)
        if self._audit:
            await self._audit.log_external_service_error(
                service="finance_store",
                error_message=str(error),
                user_id=user_id,
            )

    def _ensure_idle(self, user_id: str) -> None:
        session = self._store.get(user_id)
        if session is not None:
            raise AlreadyInConversationError(user_id, session.flow_kind)

    async def _begin(self, user_id: str, flow: FlowSpec, initial: dict[str, Any]) -> str:
        """Open the session and return the first applicable prompt."""
        session = self._store.start(user_id, flow.kind, initial)
        index = next_step_index(flow, 0, session.collected_fields)
        if index >= len(flow.steps):
            self._store.end(user_id)
            raise ConversationError(f"{flow.kind.value} has no applicable step")
        if index > 0:
            self._store.advance(user_id, index, {})

        logger.info("conversation_started", user_id=user_id, flow_kind=flow.kind.value)
        if self._audit:
            await self._audit.log_conversation_started(user_id, flow.kind.value)

        prompt = flow.steps[index].prompt(session.collected_fields)
        return f"{flow.title}\n\n{prompt}" if flow.title else prompt

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------

    async def _commit_transaction_flow(
        self,
        user_id: str,
        flow: FlowSpec,
        fields: dict[str, Any],
    ) -> str:
        record = fields.get("record")
        if record is None:
            category = fields["category"]
            record = TransactionRecord(
                type=fields["transaction_type"],
                transaction_date=fields["transaction_date"],
                description=fields["description"],
                category=category.name,
                category_id=category.id,
                amount=fields["amount"],
            )
        return await self._commit_transaction(user_id, flow, record, fields.get("project"))

    async def _commit_transaction(
        self,
        user_id: str,
        flow: FlowSpec,
        record: TransactionRecord,
        option: Optional[ProjectOption],
    ) -> str:
        """The single place a transaction is persisted. One attempt only."""
        project_id = option.project_id if option else None
        try:
            transaction_id = await self._call(
                self._finance.persist_transaction(user_id, project_id, record)
            )
        except CollaboratorError as e:
            return await self._commit_failed(user_id, flow, e)

        logger.info(
            "transaction_committed",
            user_id=user_id,
            transaction_id=str(transaction_id),
            type=record.type.value,
            source=record.source.value,
        )
        if self._audit:
            await self._audit.log_transaction_committed(
                user_id=user_id,
                transaction_id=transaction_id,
                transaction_type=record.type.value,
                description=record.description,
                amount=str(record.amount),
                project_id=project_id,
            )

        if option is not None and option.project_id is not None:
            currency, project_name = option.currency, option.label
        else:
            currency, project_name = self._default_currency, GENERAL_LABELS[record.type]

        return messages.transaction_saved(
            transaction_type=record.type.value,
            date_text=record.transaction_date.isoformat(),
            description=record.description,
            category=record.category,
            amount=record.amount,
            currency=currency,
            project_name=project_name,
        )

    async def _commit_create_project(
        self,
        user_id: str,
        flow: FlowSpec,
        fields: dict[str, Any],
    ) -> str:
        try:
            project = await self._call(
                self._finance.create_project(user_id, fields["name"], fields["currency"])
            )
        except CollaboratorError as e:
            if e.kind == ErrorKind.REJECTED:
                logger.info("duplicate_project", user_id=user_id, name=fields["name"])
                return messages.DUPLICATE_PROJECT
            return await self._commit_failed(user_id, flow, e)

        if self._audit:
            await self._audit.log_project_created(user_id, project.id, project.name)
        return messages.project_created(project.name, project.currency)

    async def _commit_project_status(
        self,
        user_id: str,
        flow: FlowSpec,
        fields: dict[str, Any],
    ) -> str:
        option: ProjectOption = fields["project"]
        target: ProjectStatus = fields["target_status"]
        try:
            await self._call(
                self._finance.set_project_status(user_id, option.project_id, target)
            )
        except CollaboratorError as e:
            return await self._commit_failed(user_id, flow, e)

        if self._audit:
            await self._audit.log_project_status_changed(user_id, option.project_id, target.value)
        if target == ProjectStatus.CLOSED:
            return messages.project_closed(option.label)
        return messages.project_opened(option.label)

    async def _commit_failed(self, user_id: str, flow: FlowSpec, error: CollaboratorError) -> str:
        logger.error(
            "commit_failed",
            user_id=user_id,
            flow_kind=flow.kind.value,
            kind=error.kind.value,
            error=str(error),
        )
        if self._audit:
            await self._audit.log_commit_failed(
                user_id=user_id,
                flow_kind=flow.kind.value,
                error_kind=error.kind.value,
                error_message=str(error),
            )
        return messages.commit_failed(error.kind, flow.subject, flow.retry_hint)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self._timeout, PersistenceError)
