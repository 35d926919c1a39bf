# Overview: Service-layer operations for expenses and expense categories.

"""
Expenses.

An expense names a category, who was paid (or who paid), an amount in one
currency and a direction. When a safe is named the money moves in the same
transaction as the expense row:
- outgoing: withdrawal from the safe
- incoming: deposit into the safe

The safe ledger is append-only, so deleting an expense that moved money
appends the opposite transaction instead of touching the original.
"""

from __future__ import annotations

import logging

from ..errors import ServiceError
from ..extensions import db
from ..models import Expense, ExpenseCategory
from ..validation import ConflictError, FieldErrors, ValidationError
from . import safe_service
from .concurrency import lock_for_update, run_atomic

logger = logging.getLogger(__name__)

CURRENCIES = ("LYD", "USD")

DIRECTION_OUTGOING = "outgoing"
DIRECTION_INCOMING = "incoming"
DIRECTIONS = (DIRECTION_OUTGOING, DIRECTION_INCOMING)

REF_EXPENSE = "expense"
REF_EXPENSE_REVERSAL = "expense_reversal"


class ExpenseError(ServiceError):
    """Raised for expense operation errors."""
    pass


def _currency_amounts(currency: str, amount: int) -> tuple[int, int]:
    """(usd, lyd) cents for an amount held in one currency."""
    if currency == "USD":
        return amount, 0
    return 0, amount


# ============================================================================
# Categories
# ============================================================================

def list_categories(include_inactive: bool = False) -> list[ExpenseCategory]:
    query = db.session.query(ExpenseCategory)
    if not include_inactive:
        query = query.filter(ExpenseCategory.is_active.is_(True))
    return query.order_by(ExpenseCategory.name.asc()).all()


def create_category(payload: dict) -> ExpenseCategory:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    name = errs.string(payload, "name", max_length=64)
    description = errs.string(payload, "description", required=False, max_length=255)
    errs.raise_if_any()

    if db.session.query(ExpenseCategory.id).filter_by(name=name).first():
        raise ConflictError("Expense category already exists")

    category = ExpenseCategory(name=name, description=description, is_active=True)
    db.session.add(category)
    db.session.commit()
    return category


# ============================================================================
# Expenses
# ============================================================================

def list_expenses(category_id: int | None = None, safe_id: int | None = None) -> list[Expense]:
    query = db.session.query(Expense)
    if category_id is not None:
        query = query.filter(Expense.category_id == category_id)
    if safe_id is not None:
        query = query.filter(Expense.safe_id == safe_id)
    return query.order_by(Expense.id.desc()).all()


def create_expense(payload: dict, user) -> Expense:
    """
    Record an expense and, when safe_id is given, move the money.

    payload: category_id, person_name, amount_cents, currency?, direction?,
    description?, safe_id?
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    category_id = errs.integer(payload, "category_id", minimum=1)
    person_name = errs.string(payload, "person_name", max_length=255)
    amount = errs.integer(payload, "amount_cents", minimum=1)
    currency = errs.choice(payload, "currency", CURRENCIES, default="LYD")
    direction = errs.choice(payload, "direction", DIRECTIONS, default=DIRECTION_OUTGOING)
    description = errs.string(payload, "description", required=False, max_length=255)
    safe_id = errs.integer(payload, "safe_id", required=False, minimum=1)
    errs.raise_if_any()

    def _op():
        category = db.session.get(ExpenseCategory, category_id)
        if category is None:
            raise ExpenseError("Expense category not found", status_code=404)
        if not category.is_active:
            raise ExpenseError("Expense category is not active", details={"category_id": category_id})

        expense = Expense(
            category_id=category.id,
            person_name=person_name,
            amount_cents=amount,
            currency=currency,
            direction=direction,
            description=description,
            safe_id=safe_id,
            created_by_user_id=user.id,
        )
        db.session.add(expense)
        db.session.flush()

        if safe_id is not None:
            usd, lyd = _currency_amounts(currency, amount)
            tx = safe_service.post_transaction(
                safe_id=safe_id,
                type=safe_service.TX_WITHDRAWAL if direction == DIRECTION_OUTGOING else safe_service.TX_DEPOSIT,
                amount_usd_cents=usd,
                amount_lyd_cents=lyd,
                description=f"Expense: {person_name} - {category.name}",
                reference_type=REF_EXPENSE,
                reference_id=expense.id,
                created_by_user_id=user.id,
            )
            expense.safe_transaction_id = tx.id

        db.session.commit()
        return expense

    return run_atomic(_op)


def delete_expense(expense_id: int, user) -> dict:
    """
    Remove an expense. Returns the reversing safe transaction id (or None).
    """
    def _op():
        expense = lock_for_update(db.session.query(Expense).filter_by(id=expense_id)).first()
        if expense is None:
            raise ExpenseError("Expense not found", status_code=404)

        reversal_id = None
        if expense.safe_transaction_id is not None:
            usd, lyd = _currency_amounts(expense.currency, expense.amount_cents)
            outgoing = expense.direction == DIRECTION_OUTGOING
            tx = safe_service.post_transaction(
                safe_id=expense.safe_id,
                type=safe_service.TX_DEPOSIT if outgoing else safe_service.TX_WITHDRAWAL,
                amount_usd_cents=usd,
                amount_lyd_cents=lyd,
                description=f"Reversal of expense {expense.id}",
                reference_type=REF_EXPENSE_REVERSAL,
                reference_id=expense.id,
                created_by_user_id=user.id,
            )
            reversal_id = tx.id

        db.session.delete(expense)
        db.session.commit()
        logger.info("Expense %s deleted by user %s", expense_id, user.id)
        return {"expense_id": expense_id, "reversal_transaction_id": reversal_id}

    return run_atomic(_op)
