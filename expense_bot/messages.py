"""
User-Facing Messages

Every reply the bot sends is built here, so wording lives in one place.
Messages use Telegram's legacy Markdown (*bold*, `code`).
"""

from decimal import Decimal

from expense_bot.services.errors import ErrorKind


def money(amount: Decimal, currency: str = "$") -> str:
    return f"{currency}{amount:,.2f}"


def numbered(labels: list[str]) -> str:
    return "\n".join(f"{index}. {label}" for index, label in enumerate(labels, start=1))


# =============================================================================
# GENERAL
# =============================================================================

WELCOME = """👋 *Welcome to your Expense Tracker!*

📸 Send me a photo of a receipt and I'll record it for you.
✍️ Or add entries by hand with /create (expense) and /income.

Type /help to see everything I can do."""

HELP = """🤖 *Expense Tracker Commands*

📸 *Receipts*
Send a receipt photo to record an expense.

💸 *Transactions*
/create - Add an expense step by step
/income - Add an income step by step

📁 *Projects*
/new - Create a project
/list - List your projects
/close - Close an open project
/open - Reopen a closed project

📊 *Summaries*
/stats - This month's overview
/today - Today's expenses
/yesterday - Yesterday's expenses
/week - This week's expenses
/month - This month's expenses
/summary <period> - e.g. `/summary week`, `/summary jan-mar`, `/summary 1-6`

/cancel - Stop the current step-by-step dialog"""

UNKNOWN_COMMAND = """🤔 I didn't understand that.

Send a receipt photo, or type /help to see the available commands."""

RATE_LIMITED = "⏳ Too many requests. Please wait a moment and try again."

PHOTO_TOO_SOON = "⏳ Please wait a few seconds between receipt photos."

MEDIA_GROUP_REJECTED = """📸 Please send receipts one at a time.

Albums (several photos in one message) are not supported."""

FINISH_CONVERSATION_FIRST = """✋ You're in the middle of another entry.

Please finish it first, or type /cancel to stop it, then send the photo again."""

PROCESSING_RECEIPT = "🔍 Processing your receipt..."

NOTHING_TO_CANCEL = "ℹ️ There is nothing to cancel."

CANCELLED = """❌ *Cancelled*

Nothing was saved. Start again any time."""

GENERIC_ERROR = "❌ Sorry, something went wrong. Please try again."

SERVICE_UNAVAILABLE = "❌ Sorry, I couldn't reach your data right now. Please try again in a moment."

SUMMARY_USAGE = """📊 *Usage:* `/summary <period>`

*Examples:*
• `/summary day`
• `/summary week`
• `/summary month`
• `/summary jan-aug`
• `/summary january-march`
• `/summary 1-6`"""


# =============================================================================
# RECEIPTS
# =============================================================================

def extraction_failed(kind: ErrorKind) -> str:
    if kind == ErrorKind.INVALID_RESPONSE:
        return ("❌ I couldn't read that receipt.\n\n"
                "Please send a clearer photo, with the whole receipt in frame.")
    if kind == ErrorKind.REJECTED:
        return "❌ That image could not be processed. Please send a photo of a receipt."
    return "❌ Receipt processing is temporarily unavailable. Please send the photo again in a minute."


RECEIPT_NO_TOTAL = """❌ I couldn't find a total on that receipt.

Please send a clearer photo, or add the expense by hand with /create."""


def receipt_summary(date_text: str, store_name: str, category: str, total: Decimal) -> str:
    return (
        "✅ *Receipt Processed Successfully!*\n\n"
        "📊 *Extracted Data:*\n"
        f"📅 Date: {date_text}\n"
        f"🏪 Store: {store_name}\n"
        f"🏷️ Category: {category}\n"
        f"💰 Total: {total:,.2f}"
    )


# =============================================================================
# COMMITS
# =============================================================================

def transaction_saved(
    transaction_type: str,
    date_text: str,
    description: str,
    category: str,
    amount: Decimal,
    currency: str,
    project_name: str,
) -> str:
    title = "Expense" if transaction_type == "expense" else "Income"
    label = "🏪 Store" if transaction_type == "expense" else "📝 Description"
    return (
        f"✅ *{title} Saved Successfully!*\n\n"
        "📊 *Summary:*\n"
        f"📅 Date: {date_text}\n"
        f"{label}: {description}\n"
        f"🏷️ Category: {category[:1].upper()}{category[1:]}\n"
        f"💰 Amount: {money(amount, currency)}\n"
        f"📁 Project: {project_name}"
    )


def project_created(name: str, currency: str) -> str:
    return (
        "✅ *Project Created Successfully!*\n\n"
        f"📁 Name: {name}\n"
        f"💱 Currency: {currency}\n\n"
        "New expenses and income can now be assigned to this project."
    )


def project_closed(name: str) -> str:
    return (
        "✅ *Project Closed Successfully!*\n\n"
        f"📁 Project \"{name}\" has been closed and will no longer appear in selection menus.\n\n"
        "💡 You can reopen it anytime using /open."
    )


def project_opened(name: str) -> str:
    return (
        "✅ *Project Reopened Successfully!*\n\n"
        f"📁 Project \"{name}\" is open again and can receive new entries."
    )


DUPLICATE_PROJECT = "❌ You already have a project with that name. Please try again with /new and pick another name."


def commit_failed(kind: ErrorKind, what: str, retry_hint: str) -> str:
    """Failure reply for a commit; always tells the user how to retry."""
    if kind == ErrorKind.NOT_FOUND:
        reason = f"❌ The selected project no longer exists, so your {what} was not saved."
    elif kind == ErrorKind.TIMEOUT:
        reason = f"❌ Saving your {what} took too long and may not have been saved. Check /today before retrying."
    else:
        reason = f"❌ Sorry, there was an error saving your {what}."
    return f"{reason}\n\n{retry_hint}"


def load_failed(retry_hint: str) -> str:
    return f"❌ Sorry, I couldn't load your data right now.\n\n{retry_hint}"


# =============================================================================
# PROJECTS
# =============================================================================

NO_OPEN_PROJECTS = "📁 You have no open projects to close.\n\nCreate one with /new."

NO_CLOSED_PROJECTS = "📁 You have no closed projects to reopen."

NO_PROJECTS = "📁 You don't have any projects yet.\n\nCreate one with /new."

NO_CATEGORIES = "❌ You don't have any categories of this type yet. Please set them up first."


def project_list(open_lines: list[str], closed_lines: list[str]) -> str:
    parts = ["📁 *Your Projects*"]
    if open_lines:
        parts.append("🟢 *Open*\n" + "\n".join(f"• {line}" for line in open_lines))
    if closed_lines:
        parts.append("⚪ *Closed*\n" + "\n".join(f"• {line}" for line in closed_lines))
    return "\n\n".join(parts)
