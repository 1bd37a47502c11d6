"""
النسخ الاحتياطي والاستعادة
============================

التصدير: مستند JSON واحد بكل بيانات المكتب.
الاستعادة: استبدال كامل لبيانات المكتب داخل معاملة واحدة (بدون دمج جزئي).
المعرفات تُعاد ترقيمها، والروابط (معقب / عميل) تُحول للمعرفات الجديدة.
"""

import logging
from datetime import date, datetime

from moaqeb import change_feed
from moaqeb.errors import ValidationError
from moaqeb.membership import ensure_feature
from moaqeb.models import (
    Agent, AgentTransfer, BankAccount, Client, ClientRefund, Expense, SalaryConfig,
    Transaction, User, db,
)
from moaqeb.treasury import ensure_accounts

LOGGER = logging.getLogger(__name__)

BACKUP_KEYS = (
    'transactions', 'balances', 'pendingBalances', 'clients', 'agents', 'expenses',
    'agentTransfers', 'clientRefunds', 'salaryConfigs', 'timestamp',
)


def _office_employee_ids(ctx):
    if ctx.office_id is None:
        return set()
    rows = User.query.with_entities(User.id).filter(
        User.role == 'employee', User.parent_id == ctx.office_id).all()
    return {r[0] for r in rows}


def export_backup(ctx, now=None):
    """تصدير بيانات المكتب كاملة"""
    ensure_feature(ctx, 'backup')
    accounts = ensure_accounts(ctx)
    db.session.commit()

    employee_ids = _office_employee_ids(ctx)
    configs = SalaryConfig.query.filter(SalaryConfig.employee_id.in_(sorted(employee_ids))).all() if employee_ids else []

    document = {
        'transactions': [t.to_dict() for t in ctx.query(Transaction).order_by(Transaction.id)],
        'balances': {name: round(a.balance or 0.0, 2) for name, a in accounts.items()},
        'pendingBalances': {name: round(a.pending_balance or 0.0, 2) for name, a in accounts.items()},
        'clients': [c.to_dict() for c in ctx.query(Client).order_by(Client.id)],
        'agents': [a.to_dict() for a in ctx.query(Agent).order_by(Agent.id)],
        'expenses': [e.to_dict() for e in ctx.query(Expense).order_by(Expense.id)],
        'agentTransfers': [t.to_dict() for t in ctx.query(AgentTransfer).order_by(AgentTransfer.id)],
        'clientRefunds': [r.to_dict() for r in ctx.query(ClientRefund).order_by(ClientRefund.id)],
        'salaryConfigs': {str(c.employee_id): c.to_dict() for c in configs},
        'timestamp': (now or datetime.utcnow()).isoformat(),
    }
    LOGGER.info('Backup exported for office %s (%s transactions)',
                ctx.office_id, len(document['transactions']))
    return document


def _dt(value, default=None):
    if value in (None, ''):
        return default
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # طوابع زمنية بالمللي ثانية
        return datetime.utcfromtimestamp(value / 1000)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError('تاريخ غير صالح في ملف النسخة الاحتياطية', value=value)


def _d(value):
    parsed = _dt(value)
    return parsed.date() if parsed else None


def _money(value):
    try:
        return round(float(value or 0.0), 2)
    except (TypeError, ValueError):
        raise ValidationError('مبلغ غير صالح في ملف النسخة الاحتياطية', value=value)


def _validate(document):
    if not isinstance(document, dict):
        raise ValidationError('ملف النسخة الاحتياطية غير صالح')
    for key in ('transactions', 'clients', 'agents', 'expenses', 'agentTransfers', 'clientRefunds'):
        if not isinstance(document.get(key, []), list):
            raise ValidationError(f'ملف النسخة الاحتياطية غير صالح ({key})')
    for key in ('balances', 'pendingBalances', 'salaryConfigs'):
        if not isinstance(document.get(key, {}), dict):
            raise ValidationError(f'ملف النسخة الاحتياطية غير صالح ({key})')


def _wipe(ctx, employee_ids):
    for model in (Transaction, AgentTransfer, ClientRefund, Expense, Agent, Client, BankAccount):
        ids = [row[0] for row in ctx.query(model).with_entities(model.id)]
        ctx.query(model).delete(synchronize_session='fetch')
        change_feed.record_many(db.session, model.__tablename__, ctx.feed_key, 'DELETE', ids)
    if employee_ids:
        SalaryConfig.query.filter(SalaryConfig.employee_id.in_(sorted(employee_ids))).delete(synchronize_session='fetch')
    db.session.expire_all()


def restore_backup(ctx, document):
    """استعادة نسخة احتياطية (استبدال كامل لبيانات المكتب)"""
    ensure_feature(ctx, 'backup')
    _validate(document)
    employee_ids = _office_employee_ids(ctx)

    try:
        _wipe(ctx, employee_ids)

        # البنوك
        names = list(document.get('balances', {}).keys())
        names += [n for n in document.get('pendingBalances', {}) if n not in names]
        for name in names:
            db.session.add(BankAccount(
                **ctx.owner_fields(),
                name=name,
                balance=_money(document.get('balances', {}).get(name)),
                pending_balance=_money(document.get('pendingBalances', {}).get(name)),
            ))
        db.session.flush()
        ensure_accounts(ctx)

        agent_ids = {}
        for row in document.get('agents', []):
            employee_id = row.get('employee_id')
            agent = Agent(
                **ctx.owner_fields(),
                name=row['name'],
                phone=row.get('phone'),
                whatsapp=row.get('whatsapp'),
                employee_id=employee_id if employee_id in employee_ids else None,
                created_at=_dt(row.get('created_at'), datetime.utcnow()),
                created_by=row.get('created_by'),
            )
            db.session.add(agent)
            db.session.flush()
            agent_ids[row.get('id')] = agent.id

        client_ids = {}
        for row in document.get('clients', []):
            client = Client(
                **ctx.owner_fields(),
                name=row['name'],
                phone=row.get('phone'),
                whatsapp=row.get('whatsapp'),
                created_at=_dt(row.get('created_at'), datetime.utcnow()),
                created_by=row.get('created_by'),
            )
            db.session.add(client)
            db.session.flush()
            client_ids[row.get('id')] = client.id

        for row in document.get('transactions', []):
            created_at = _dt(row.get('created_at'), datetime.utcnow())
            db.session.add(Transaction(
                **ctx.owner_fields(),
                serial_no=str(row['serial_no']),
                type=row['type'],
                client_id=client_ids.get(row.get('client_id')),
                client_name=row.get('client_name') or '',
                agent_id=agent_ids.get(row.get('agent_id')),
                agent_name=row.get('agent_name') or '',
                client_price=_money(row.get('client_price')),
                agent_price=_money(row.get('agent_price')),
                payment_method=row['payment_method'],
                duration=int(row.get('duration') or 0),
                created_at=created_at,
                target_date=_dt(row.get('target_date'), created_at),
                status=row.get('status') or 'active',
                agent_paid=bool(row.get('agent_paid')),
                client_refunded=bool(row.get('client_refunded')),
                created_by=row.get('created_by'),
            ))

        for row in document.get('expenses', []):
            employee_id = row.get('employee_id')
            db.session.add(Expense(
                **ctx.owner_fields(),
                title=row['title'],
                amount=_money(row.get('amount')),
                bank=row['bank'],
                date=_dt(row.get('date'), datetime.utcnow()),
                created_by=row.get('created_by'),
                kind=row.get('kind') or 'general',
                employee_id=employee_id if employee_id in employee_ids else None,
                period_start=_d(row.get('period_start')),
                period_end=_d(row.get('period_end')),
            ))

        for row in document.get('agentTransfers', []):
            db.session.add(AgentTransfer(
                **ctx.owner_fields(),
                agent_id=agent_ids.get(row.get('agent_id')),
                agent_name=row['agent_name'],
                amount=_money(row.get('amount')),
                bank=row['bank'],
                date=_dt(row.get('date'), datetime.utcnow()),
                transaction_count=int(row.get('transaction_count') or 0),
                created_by=row.get('created_by'),
            ))

        for row in document.get('clientRefunds', []):
            db.session.add(ClientRefund(
                **ctx.owner_fields(),
                client_id=client_ids.get(row.get('client_id')),
                client_name=row['client_name'],
                amount=_money(row.get('amount')),
                bank=row['bank'],
                date=_dt(row.get('date'), datetime.utcnow()),
                transaction_count=int(row.get('transaction_count') or 0),
                created_by=row.get('created_by'),
            ))

        skipped = 0
        for key, row in document.get('salaryConfigs', {}).items():
            employee_id = int(row.get('employee_id') or key)
            if employee_id not in employee_ids:
                skipped += 1
                continue
            db.session.add(SalaryConfig(
                employee_id=employee_id,
                start_date=_d(row.get('start_date')) or date.today(),
                salary_type=row.get('salary_type') or 'monthly',
                rate=float(row.get('rate') or 0.0),
                amount=_money(row.get('amount')),
                is_locked=bool(row.get('is_locked', True)),
                is_stopped=bool(row.get('is_stopped')),
                stopped_at=_d(row.get('stopped_at')),
            ))
        if skipped:
            LOGGER.warning('Skipped %s salary configs for unknown employees', skipped)

        db.session.commit()
    except KeyError as exc:
        db.session.rollback()
        raise ValidationError(f'حقل مفقود في ملف النسخة الاحتياطية: {exc.args[0]}')
    except Exception:
        db.session.rollback()
        raise

    LOGGER.info('Backup restored for office %s', ctx.office_id)
    return {key: len(document.get(key) or []) for key in BACKUP_KEYS if key != 'timestamp'}
