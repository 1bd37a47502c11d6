"""
المصروفات
==========
كل مصروف يُخصم من رصيد البنك فوراً (بشرط كفاية الرصيد)، وحذفه يعيد المبلغ للبنك.
"""

import logging
from datetime import datetime

from moaqeb import treasury
from moaqeb.errors import NotFoundError, ValidationError
from moaqeb.membership import ensure_feature, ensure_within_limit
from moaqeb.models import EXPENSE_KINDS, Expense, db
from moaqeb.transactions_service import parse_amount

LOGGER = logging.getLogger(__name__)


def record_expense(ctx, title, amount, bank_name, kind='general', employee_id=None,
                   period_start=None, period_end=None, now=None) -> Expense:
    """
    تسجيل مصروف وخصمه من البنك داخل المعاملة الحالية (بدون commit)
    تستخدمه الرواتب أيضاً
    """
    if kind not in EXPENSE_KINDS:
        raise ValidationError('نوع مصروف غير معروف', kind=kind)
    account = treasury.get_account(ctx, bank_name, lock=True)
    treasury.apply_delta(account, balance_delta=-amount, require_balance=True)
    expense = Expense(
        **ctx.owner_fields(),
        title=title,
        amount=amount,
        bank=account.name,
        date=now or datetime.utcnow(),
        created_by=ctx.actor,
        kind=kind,
        employee_id=employee_id,
        period_start=period_start,
        period_end=period_end,
    )
    db.session.add(expense)
    return expense


def add_expense(ctx, title, amount, bank_name, now=None) -> Expense:
    title = (title or '').strip()
    if not title:
        raise ValidationError('يرجى إدخال بيان المصروف')
    amount = parse_amount(amount, 'المبلغ')
    if amount <= 0:
        raise ValidationError('يرجى إدخال مبلغ صحيح')

    ensure_within_limit(ctx, 'expenses', Expense)
    try:
        expense = record_expense(ctx, title, amount, bank_name, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Expense %s: -%s from %s (office %s)', expense.id, amount, expense.bank, ctx.office_id)
    return expense


def get_expense(ctx, expense_id) -> Expense:
    expense = ctx.query(Expense).filter(Expense.id == expense_id).first()
    if expense is None:
        raise NotFoundError('المصروف غير موجود', expense_id=expense_id)
    return expense


def list_expenses(ctx, kind=None, employee_id=None):
    query = ctx.query(Expense)
    if kind:
        query = query.filter(Expense.kind == kind)
    if employee_id is not None:
        query = query.filter(Expense.employee_id == employee_id)
    return query.order_by(Expense.date.desc(), Expense.id.desc()).all()


def delete_expense(ctx, expense_id):
    """حذف مصروف وإرجاع مبلغه للبنك"""
    ensure_feature(ctx, 'deleteExpense')
    expense = get_expense(ctx, expense_id)
    amount, bank = expense.amount, expense.bank
    try:
        account = treasury.get_account(ctx, bank, lock=True)
        treasury.apply_delta(account, balance_delta=amount)
        db.session.delete(expense)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Expense %s deleted, %s returned to %s', expense_id, amount, bank)
