"""
Guided Dialog Definitions

DESIGN DECISION: Flows are data, not code.
Each flow is an ordered tuple of steps plus a commit action. A step
pairs a prompt with a validator and names the field its parsed value is
stored under. The engine walks these tables; adding a step means adding a
row, not another branch in a switch.

The project step is shared by every transaction flow. It carries a
condition: it only runs when the user had open projects at the moment
the flow started (memoized as `has_projects`). Otherwise the transaction
is committed as a general one.
"""

from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from expense_bot import messages
from expense_bot.conversation.validators import (
    Validator,
    non_empty,
    selection,
    validate_amount,
    validate_date,
)
from expense_bot.models.conversation import FlowKind
from expense_bot.models.finance import Project


Fields = dict[str, Any]


class CommitAction(str, Enum):
    """What a flow does once its last step validated."""
    PERSIST_TRANSACTION = "persist_transaction"
    CREATE_PROJECT = "create_project"
    SET_PROJECT_STATUS = "set_project_status"


class ProjectOption(BaseModel):
    """One entry of a project selection menu."""

    label: str
    project_id: Optional[UUID] = None
    currency: str = "$"

    @property
    def display(self) -> str:
        return f"{self.label} ({self.currency})" if self.project_id else self.label


class StepSpec(BaseModel):
    """One prompt / validate / advance unit."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    field: str
    prompt: Callable[[Fields], str]
    parse: Validator
    echo: Optional[Callable[[Any], str]] = Field(
        default=None,
        description="Acknowledgement shown above the next prompt"
    )
    condition: Optional[Callable[[Fields], bool]] = Field(
        default=None,
        description="Step is skipped when this returns False"
    )

    def applies(self, fields: Fields) -> bool:
        return self.condition is None or self.condition(fields)


class FlowSpec(BaseModel):
    """A complete guided dialog."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kind: FlowKind
    title: str
    steps: tuple[StepSpec, ...]
    commit: CommitAction
    subject: str = Field(description="What is being saved, used in failure replies")
    retry_hint: str = Field(description="How the user starts over")


def build_project_options(
    projects: list[Project],
    default_currency: str,
    general_label: str = "General expenses",
) -> list[ProjectOption]:
    """General first, then the given projects in the order received."""
    general = ProjectOption(label=general_label, project_id=None, currency=default_currency)
    return [general] + [
        ProjectOption(label=p.name, project_id=p.id, currency=p.currency)
        for p in projects
    ]


# =============================================================================
# PROMPTS
# =============================================================================

def _date_prompt(noun: str) -> Callable[[Fields], str]:
    def prompt(fields: Fields) -> str:
        return (
            f"📅 Please enter the {noun} date (YYYY-MM-DD):\n\n"
            "*Examples:* 2025-01-15, 2025-08-24\n\n"
            "Type /cancel to stop."
        )
    return prompt


def _category_prompt(fields: Fields) -> str:
    labels = [c.label for c in fields.get("category_options", [])]
    return f"📋 Please select a category by typing the number:\n\n{messages.numbered(labels)}"


def _amount_prompt(fields: Fields) -> str:
    return "💰 Please enter the total amount (numbers only):\n\n*Examples:* 25.99, 100, 15.50"


def _project_prompt(fields: Fields) -> str:
    labels = [o.display for o in fields.get("project_options", [])]
    return (
        "📁 *Where would you like to save this?*\n\n"
        f"{messages.numbered(labels)}\n\n"
        "💡 Reply with the number of your choice."
    )


def _project_choice_prompt(verb: str) -> Callable[[Fields], str]:
    def prompt(fields: Fields) -> str:
        labels = [o.display for o in fields.get("project_options", [])]
        return f"📁 Which project do you want to {verb}?\n\n{messages.numbered(labels)}"
    return prompt


def _has_projects(fields: Fields) -> bool:
    return bool(fields.get("has_projects"))


# =============================================================================
# STEPS
# =============================================================================

PROJECT_STEP = StepSpec(
    field="project",
    prompt=_project_prompt,
    parse=selection("project_options"),
    condition=_has_projects,
)

CATEGORY_STEP = StepSpec(
    field="category",
    prompt=_category_prompt,
    parse=selection("category_options"),
    echo=lambda c: f"✅ Category: {c.label}",
)

AMOUNT_STEP = StepSpec(
    field="amount",
    prompt=_amount_prompt,
    parse=validate_amount,
    echo=lambda a: f"✅ Amount: {a:,.2f}",
)


# =============================================================================
# FLOWS
# =============================================================================

CREATE_EXPENSE_FLOW = FlowSpec(
    kind=FlowKind.CREATE_EXPENSE,
    title="💸 *Create New Expense*",
    steps=(
        StepSpec(
            field="transaction_date",
            prompt=_date_prompt("expense"),
            parse=validate_date,
            echo=lambda d: f"✅ Date set: {d.isoformat()}",
        ),
        StepSpec(
            field="description",
            prompt=lambda f: "🏪 Please enter the store name:\n\n*Examples:* Walmart, Amazon, Starbucks",
            parse=non_empty("Store name"),
            echo=lambda s: f"✅ Store: {s}",
        ),
        CATEGORY_STEP,
        AMOUNT_STEP,
        PROJECT_STEP,
    ),
    commit=CommitAction.PERSIST_TRANSACTION,
    subject="expense",
    retry_hint="Please try again with /create.",
)

CREATE_INCOME_FLOW = FlowSpec(
    kind=FlowKind.CREATE_INCOME,
    title="💰 *Create New Income*",
    steps=(
        StepSpec(
            field="transaction_date",
            prompt=_date_prompt("income"),
            parse=validate_date,
            echo=lambda d: f"✅ Date set: {d.isoformat()}",
        ),
        StepSpec(
            field="description",
            prompt=lambda f: "📝 Please enter a description:\n\n*Examples:* Monthly salary, Website project",
            parse=non_empty("Description"),
            echo=lambda s: f"✅ Description: {s}",
        ),
        CATEGORY_STEP,
        AMOUNT_STEP,
        PROJECT_STEP,
    ),
    commit=CommitAction.PERSIST_TRANSACTION,
    subject="income",
    retry_hint="Please try again with /income.",
)

PROJECT_SELECTION_FLOW = FlowSpec(
    kind=FlowKind.PROJECT_SELECTION,
    title="",
    steps=(PROJECT_STEP,),
    commit=CommitAction.PERSIST_TRANSACTION,
    subject="expense",
    retry_hint="Please send the receipt photo again.",
)

CREATE_PROJECT_FLOW = FlowSpec(
    kind=FlowKind.CREATE_PROJECT,
    title="📁 *Create New Project*",
    steps=(
        StepSpec(
            field="name",
            prompt=lambda f: "📝 Please enter the project name:\n\nType /cancel to stop.",
            parse=non_empty("Project name", max_length=255),
            echo=lambda s: f"✅ Project name: {s}",
        ),
        StepSpec(
            field="currency",
            prompt=lambda f: "💱 Please enter the currency for this project:\n\n*Examples:* USD, MYR, €",
            parse=non_empty("Currency", max_length=20),
        ),
    ),
    commit=CommitAction.CREATE_PROJECT,
    subject="project",
    retry_hint="Please try again with /new.",
)

CLOSE_PROJECT_FLOW = FlowSpec(
    kind=FlowKind.CLOSE_PROJECT,
    title="🔒 *Close Project*",
    steps=(
        StepSpec(
            field="project",
            prompt=_project_choice_prompt("close"),
            parse=selection("project_options"),
        ),
    ),
    commit=CommitAction.SET_PROJECT_STATUS,
    subject="project change",
    retry_hint="Please try again with /close.",
)

OPEN_PROJECT_FLOW = FlowSpec(
    kind=FlowKind.OPEN_PROJECT,
    title="🔓 *Reopen Project*",
    steps=(
        StepSpec(
            field="project",
            prompt=_project_choice_prompt("reopen"),
            parse=selection("project_options"),
        ),
    ),
    commit=CommitAction.SET_PROJECT_STATUS,
    subject="project change",
    retry_hint="Please try again with /open.",
)

FLOWS: dict[FlowKind, FlowSpec] = {
    flow.kind: flow
    for flow in (
        CREATE_EXPENSE_FLOW,
        CREATE_INCOME_FLOW,
        PROJECT_SELECTION_FLOW,
        CREATE_PROJECT_FLOW,
        CLOSE_PROJECT_FLOW,
        OPEN_PROJECT_FLOW,
    )
}


def next_step_index(flow: FlowSpec, start: int, fields: Fields) -> int:
    """First index >= start whose step applies; len(steps) means terminal."""
    index = start
    while index < len(flow.steps) and not flow.steps[index].applies(fields):
        index += 1
    return index
