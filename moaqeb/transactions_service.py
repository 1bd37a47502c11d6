"""
دورة حياة المعاملة وترحيل الأرصدة
===================================

- الإنشاء: balance[bank] += سعر العميل فوراً
- التعديل (نشطة فقط): balance[old] -= old_amount ثم balance[new] += new_amount
- الإنجاز: pending[bank] += سعر المعقب (يُصرف عند تسوية المعقب)
- الإلغاء: pending[bank] += سعر العميل (مرتجع مستحق للعميل)
- الحذف (نشطة / ملغاة فقط): لا يعكس أي ترحيل سابق
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from moaqeb import treasury
from moaqeb.config import SELF_HANDLED_AGENT, SERIAL_NO_WIDTH
from moaqeb.contacts import resolve_agent, resolve_client
from moaqeb.errors import ConcurrentUpdateError, InvalidStateError, NotFoundError, ValidationError
from moaqeb.membership import ensure_within_limit
from moaqeb.models import TRANSACTION_STATUSES, Transaction, db

LOGGER = logging.getLogger(__name__)

SERIAL_RETRIES = 3


def parse_amount(value, label):
    """تحويل مبلغ مُدخل إلى float غير سالب"""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'يرجى إدخال {label}')
    try:
        amount = round(float(value), 2)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} غير صحيح')
    if amount < 0:
        raise ValidationError(f'{label} لا يمكن أن يكون سالباً')
    return amount


def _parse_duration(value):
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise ValidationError('يرجى إدخال مدة الإنجاز بالأيام')
    if duration < 0:
        raise ValidationError('مدة الإنجاز غير صحيحة')
    return duration


def next_serial_no(ctx):
    """الرقم التسلسلي التالي للمكتب (0001, 0002, ...)"""
    serials = ctx.query(Transaction).with_entities(Transaction.serial_no).all()
    current = 0
    for (serial,) in serials:
        try:
            current = max(current, int(serial))
        except (TypeError, ValueError):
            continue
    return str(current + 1).zfill(SERIAL_NO_WIDTH)


def get_transaction(ctx, transaction_id) -> Transaction:
    tx = ctx.query(Transaction).filter(Transaction.id == transaction_id).first()
    if tx is None:
        raise NotFoundError('المعاملة غير موجودة', transaction_id=transaction_id)
    return tx


def find_by_serial(ctx, serial_no):
    tx = ctx.query(Transaction).filter(Transaction.serial_no == str(serial_no).zfill(SERIAL_NO_WIDTH)).first()
    if tx is None:
        raise NotFoundError('لم يتم العثور على معاملة بهذا الرقم', serial_no=serial_no)
    return tx


def list_transactions(ctx, status=None):
    query = ctx.query(Transaction)
    if status:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError('حالة غير معروفة', status=status)
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


def count_by_status(ctx):
    rows = (ctx.query(Transaction)
            .with_entities(Transaction.status, func.count(Transaction.id))
            .group_by(Transaction.status)
            .all())
    counts = {status: 0 for status in TRANSACTION_STATUSES}
    counts.update({status: count for status, count in rows})
    return counts


def _prices(data, self_handled):
    client_price = parse_amount(data.get('client_price'), 'سعر العميل')
    if self_handled:
        agent_price = 0.0
    else:
        agent_price = parse_amount(data.get('agent_price'), 'سعر المعقب')
    return client_price, agent_price


def create_transaction(ctx, data, now=None) -> Transaction:
    """إنشاء معاملة وإضافة سعر العميل لرصيد البنك"""
    tx_type = (data.get('type') or '').strip()
    if not tx_type:
        raise ValidationError('يرجى إدخال نوع المعاملة')

    agent, agent_name = resolve_agent(ctx, data.get('agent_id'), data.get('agent_name'))
    client, client_name = resolve_client(ctx, data.get('client_id'), data.get('client_name'))
    client_price, agent_price = _prices(data, agent_name == SELF_HANDLED_AGENT)
    duration = _parse_duration(data.get('duration'))
    bank_name = (data.get('payment_method') or '').strip()

    ensure_within_limit(ctx, 'transactions', Transaction)

    now = now or datetime.utcnow()
    for attempt in range(1, SERIAL_RETRIES + 1):
        try:
            tx = _insert_transaction(ctx, now, tx_type, client, client_name, agent, agent_name,
                                     client_price, agent_price, duration, bank_name)
            db.session.commit()
            break
        except IntegrityError:
            # رقم تسلسلي محجوز من عملية متزامنة
            db.session.rollback()
            LOGGER.warning('Serial number conflict for office %s (attempt %s)', ctx.office_id, attempt)
        except Exception:
            db.session.rollback()
            raise
    else:
        raise ConcurrentUpdateError('تعذر حجز رقم تسلسلي للمعاملة، يرجى المحاولة مجدداً')

    LOGGER.info('Transaction %s created: +%s to %s (office %s)',
                tx.serial_no, client_price, tx.payment_method, ctx.office_id)
    return tx


def _insert_transaction(ctx, now, tx_type, client, client_name, agent, agent_name,
                        client_price, agent_price, duration, bank_name):
    account = treasury.get_account(ctx, bank_name)
    tx = Transaction(
        **ctx.owner_fields(),
        serial_no=next_serial_no(ctx),
        type=tx_type,
        client_id=client.id if client else None,
        client_name=client_name,
        agent_id=agent.id if agent else None,
        agent_name=agent_name,
        client_price=client_price,
        agent_price=agent_price,
        payment_method=account.name,
        duration=duration,
        created_at=now,
        target_date=now + timedelta(days=duration),
        status='active',
        agent_paid=False,
        client_refunded=False,
        created_by=ctx.actor,
    )
    db.session.add(tx)
    db.session.flush()
    treasury.apply_delta(account, balance_delta=client_price)
    return tx


def _ensure_active(tx, action):
    if tx.status != 'active':
        raise InvalidStateError(f'لا يمكن {action} معاملة حالتها {tx.status}', status=tx.status)


def edit_transaction(ctx, transaction_id, data) -> Transaction:
    """تعديل معاملة نشطة مع إعادة ترحيل سعر العميل"""
    tx = get_transaction(ctx, transaction_id)
    _ensure_active(tx, 'تعديل')

    old_bank, old_amount = tx.payment_method, tx.client_price

    if 'agent_id' in data or 'agent_name' in data:
        agent, agent_name = resolve_agent(ctx, data.get('agent_id'), data.get('agent_name'))
    else:
        agent, agent_name = tx.agent, tx.agent_name
    if 'client_id' in data or 'client_name' in data:
        client, client_name = resolve_client(ctx, data.get('client_id'), data.get('client_name'))
    else:
        client, client_name = tx.client, tx.client_name

    self_handled = agent_name == SELF_HANDLED_AGENT
    client_price = parse_amount(data['client_price'], 'سعر العميل') if 'client_price' in data else old_amount
    if self_handled:
        agent_price = 0.0
    elif 'agent_price' in data:
        agent_price = parse_amount(data['agent_price'], 'سعر المعقب')
    else:
        agent_price = tx.agent_price
    new_bank = (data.get('payment_method') or old_bank).strip()

    if 'type' in data:
        tx_type = (data.get('type') or '').strip()
        if not tx_type:
            raise ValidationError('يرجى إدخال نوع المعاملة')
        tx.type = tx_type

    try:
        if new_bank != old_bank or client_price != old_amount:
            old_account = treasury.get_account(ctx, old_bank)
            new_account = treasury.get_account(ctx, new_bank)
            treasury.apply_delta(old_account, balance_delta=-old_amount)
            treasury.apply_delta(new_account, balance_delta=client_price)

        if 'duration' in data:
            tx.duration = _parse_duration(data['duration'])
            tx.target_date = tx.created_at + timedelta(days=tx.duration)

        tx.agent_id = agent.id if agent else None
        tx.agent_name = agent_name
        tx.client_id = client.id if client else None
        tx.client_name = client_name
        tx.client_price = client_price
        tx.agent_price = agent_price
        tx.payment_method = new_bank
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    LOGGER.info('Transaction %s edited: %s/%s -> %s/%s',
                tx.serial_no, old_bank, old_amount, new_bank, client_price)
    return tx


def complete_transaction(ctx, transaction_id) -> Transaction:
    """إنجاز المعاملة: سعر المعقب يُحجز في الرصيد المعلق حتى التسوية"""
    tx = get_transaction(ctx, transaction_id)
    _ensure_active(tx, 'إنجاز')
    try:
        tx.status = 'completed'
        if tx.agent_price > 0:
            account = treasury.get_account(ctx, tx.payment_method)
            treasury.apply_delta(account, pending_delta=tx.agent_price)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Transaction %s completed', tx.serial_no)
    return tx


def cancel_transaction(ctx, transaction_id) -> Transaction:
    """إلغاء المعاملة: سعر العميل يصبح مرتجعاً في الرصيد المعلق"""
    tx = get_transaction(ctx, transaction_id)
    _ensure_active(tx, 'إلغاء')
    try:
        tx.status = 'cancelled'
        account = treasury.get_account(ctx, tx.payment_method)
        treasury.apply_delta(account, pending_delta=tx.client_price)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Transaction %s cancelled, %s pending refund in %s',
                tx.serial_no, tx.client_price, tx.payment_method)
    return tx


def update_status(ctx, transaction_id, status) -> Transaction:
    if status == 'completed':
        return complete_transaction(ctx, transaction_id)
    if status == 'cancelled':
        return cancel_transaction(ctx, transaction_id)
    raise InvalidStateError('انتقال حالة غير مسموح', status=status)


def delete_transaction(ctx, transaction_id):
    """حذف المعاملة - لا يتم عكس الأرصدة المرحلة سابقاً"""
    tx = get_transaction(ctx, transaction_id)
    if tx.status not in ('active', 'cancelled'):
        raise InvalidStateError('لا يمكن حذف معاملة منجزة', status=tx.status)
    serial = tx.serial_no
    try:
        db.session.delete(tx)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Transaction %s deleted without reversing postings', serial)
