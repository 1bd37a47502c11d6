"""
الخزينة: أرصدة البنوك والرصيد المعلق
======================================

كل تغيير على balance أو pending_balance يمر عبر apply_delta:
تحديث شرطي واحد على صف البنك (compare-and-swap) بدل القراءة ثم الكتابة.
"""

import logging
from datetime import datetime

from sqlalchemy import case, func, update

from moaqeb import change_feed
from moaqeb.errors import InsufficientFundsError, ValidationError
from moaqeb.membership import ensure_feature, get_settings
from moaqeb.models import BankAccount, db

LOGGER = logging.getLogger(__name__)

# هامش مقارنة المبالغ العشرية
_EPSILON = 1e-6


def configured_banks():
    return get_settings().get_banks()


def ensure_accounts(ctx):
    """إنشاء حسابات البنوك المعرفة في الإعدادات للمكتب (برصيد صفر)"""
    existing = {a.name: a for a in ctx.query(BankAccount).all()}
    created = False
    for bank in configured_banks():
        if bank['name'] in existing:
            continue
        account = BankAccount(
            **ctx.owner_fields(),
            name=bank['name'],
            account_number=bank.get('account_number'),
            balance=0.0,
            pending_balance=0.0,
        )
        db.session.add(account)
        existing[account.name] = account
        created = True
    if created:
        db.session.flush()
    return existing


def get_account(ctx, bank_name, lock=False) -> BankAccount:
    """
    حساب البنك بالاسم

    Parameters:
    -----------
    lock : bool
        قفل الصف (SELECT ... FOR UPDATE) حتى نهاية المعاملة
    """
    name = (bank_name or '').strip()
    if not name:
        raise ValidationError('يرجى اختيار البنك / طريقة الدفع')

    query = ctx.query(BankAccount).filter(BankAccount.name == name)
    if lock:
        query = query.with_for_update()
    account = query.first()
    if account is not None:
        return account

    if name not in {b['name'] for b in configured_banks()}:
        raise ValidationError(f'البنك "{name}" غير معرف في الإعدادات', bank=name)

    ensure_accounts(ctx)
    query = ctx.query(BankAccount).filter(BankAccount.name == name)
    if lock:
        query = query.with_for_update()
    return query.one()


def _lock_account(account):
    return BankAccount.query.filter(BankAccount.id == account.id).with_for_update().one()


def lock_accounts(*accounts):
    """قفل عدة حسابات بترتيب المعرف تصاعدياً (ترتيب ثابت بين العمليات المتزامنة)"""
    return [_lock_account(a) for a in sorted(accounts, key=lambda a: a.id)]


def apply_delta(account, balance_delta=0.0, pending_delta=0.0,
                require_balance=False, require_pending=False, floor_pending=False):
    """
    تطبيق تغيير على رصيد البنك في UPDATE واحد

    - require_balance: يرفض الخصم إذا كان الرصيد الفعلي أقل من المبلغ
    - require_pending: يرفض الخصم إذا كان الرصيد المعلق أقل من المبلغ
    - floor_pending: لا ينزل الرصيد المعلق تحت الصفر
    """
    balance_delta = round(float(balance_delta or 0.0), 2)
    pending_delta = round(float(pending_delta or 0.0), 2)
    if not balance_delta and not pending_delta:
        return account

    stmt = update(BankAccount).where(BankAccount.id == account.id)
    values = {'updated_at': datetime.utcnow()}

    if balance_delta:
        values['balance'] = BankAccount.balance + balance_delta
        if require_balance and balance_delta < 0:
            stmt = stmt.where(BankAccount.balance >= -balance_delta - _EPSILON)

    if pending_delta:
        new_pending = BankAccount.pending_balance + pending_delta
        if floor_pending:
            new_pending = case((new_pending < 0, 0.0), else_=new_pending)
        values['pending_balance'] = new_pending
        if require_pending and pending_delta < 0:
            stmt = stmt.where(BankAccount.pending_balance >= -pending_delta - _EPSILON)

    result = db.session.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        pool = 'المعلق ' if require_pending and not require_balance else ''
        LOGGER.warning('Insufficient funds in %s (balance %s, pending %s)',
                       account.name, balance_delta, pending_delta)
        raise InsufficientFundsError(
            f'الرصيد {pool}في {account.name} غير كافٍ لإتمام العملية',
            bank=account.name,
        )

    db.session.expire(account, ['balance', 'pending_balance', 'updated_at'])
    change_feed.record(db.session, BankAccount.__tablename__, change_feed.owner_key(account), 'UPDATE', account.id)
    return account


# ==========================================
# القراءة
# ==========================================

def get_balances(ctx):
    accounts = ensure_accounts(ctx)
    db.session.commit()
    return {name: round(a.balance or 0.0, 2) for name, a in accounts.items()}


def get_pending_balances(ctx):
    accounts = ensure_accounts(ctx)
    db.session.commit()
    return {name: round(a.pending_balance or 0.0, 2) for name, a in accounts.items()}


def treasury_total(ctx):
    """مجموع الأرصدة الفعلية لكل البنوك"""
    total = ctx.query(BankAccount).with_entities(func.coalesce(func.sum(BankAccount.balance), 0.0)).scalar()
    return round(total or 0.0, 2)


def list_accounts(ctx):
    accounts = ensure_accounts(ctx)
    db.session.commit()
    return sorted(accounts.values(), key=lambda a: a.id)


# ==========================================
# العمليات
# ==========================================

def transfer_between_accounts(ctx, from_bank, to_bank, amount):
    """تحويل مبلغ بين حسابين للمكتب"""
    ensure_feature(ctx, 'transfer')
    try:
        amount = round(float(amount), 2)
    except (TypeError, ValueError):
        raise ValidationError('يرجى إدخال مبلغ صحيح')
    if not from_bank or not to_bank:
        raise ValidationError('يرجى اختيار الحساب المحول منه والمحول إليه')
    if from_bank == to_bank:
        raise ValidationError('لا يمكن التحويل لنفس الحساب')
    if amount <= 0:
        raise ValidationError('يرجى إدخال مبلغ صحيح')

    try:
        source = get_account(ctx, from_bank)
        target = get_account(ctx, to_bank)
        lock_accounts(source, target)
        apply_delta(source, balance_delta=-amount, require_balance=True)
        apply_delta(target, balance_delta=amount)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    LOGGER.info('Transferred %s from %s to %s (office %s)', amount, from_bank, to_bank, ctx.office_id)
    return source, target


def zero_treasury(ctx):
    """تصفير الخزينة: كل الأرصدة والأرصدة المعلقة = 0"""
    try:
        accounts = ensure_accounts(ctx)
        for account in accounts.values():
            account.balance = 0.0
            account.pending_balance = 0.0
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Treasury zeroed for office %s', ctx.office_id)
    return len(accounts)
