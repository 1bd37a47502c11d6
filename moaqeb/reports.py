"""
التقارير وكشوف الحسابات
=========================
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta

from moaqeb.config import SELF_HANDLED_AGENT
from moaqeb.models import AgentTransfer, ClientRefund, Expense, Transaction

LOGGER = logging.getLogger(__name__)


def _period_starts(now):
    start_of_day = datetime(now.year, now.month, now.day)
    # الأسبوع يبدأ يوم الأحد (weekday: الاثنين = 0)
    start_of_week = start_of_day - timedelta(days=(now.weekday() + 1) % 7)
    start_of_month = datetime(now.year, now.month, 1)
    return start_of_day, start_of_week, start_of_month


def transaction_stats(ctx, now=None):
    """إحصائيات المعاملات لليوم / الأسبوع / الشهر"""
    now = now or datetime.utcnow()
    start_of_day, start_of_week, start_of_month = _period_starts(now)

    stats = {
        'today_count': 0, 'today_profit': 0.0,
        'week_count': 0, 'week_profit': 0.0, 'week_value': 0.0,
        'month_count': 0, 'month_profit': 0.0, 'month_value': 0.0,
        'completed_count': 0, 'cancelled_count': 0, 'active_count': 0,
        'total_value': 0.0, 'agents_total': 0.0,
    }

    for tx in ctx.query(Transaction).all():
        client_price = tx.client_price or 0.0
        agent_price = tx.agent_price or 0.0
        profit = client_price - agent_price

        if tx.created_at >= start_of_day:
            stats['today_count'] += 1
            stats['today_profit'] += profit
        if tx.created_at >= start_of_week:
            stats['week_count'] += 1
            stats['week_profit'] += profit
            stats['week_value'] += client_price
        if tx.created_at >= start_of_month:
            stats['month_count'] += 1
            stats['month_profit'] += profit
            stats['month_value'] += client_price

        stats[f'{tx.status}_count'] += 1
        stats['total_value'] += client_price
        stats['agents_total'] += agent_price

    return {k: round(v, 2) if isinstance(v, float) else v for k, v in stats.items()}


def achievers(ctx, limit=None):
    """المعقبين الأكثر إنجازاً (حسب إجمالي قيمة المعاملات المنجزة)"""
    grouped = OrderedDict()
    rows = ctx.query(Transaction).filter(Transaction.status == 'completed').order_by(Transaction.id).all()
    for tx in rows:
        entry = grouped.setdefault(tx.agent_name, {'name': tx.agent_name, 'count': 0, 'total': 0.0})
        entry['count'] += 1
        entry['total'] += tx.client_price or 0.0

    result = sorted(grouped.values(), key=lambda e: e['total'], reverse=True)
    for entry in result:
        entry['total'] = round(entry['total'], 2)
        entry['self_handled'] = entry['name'] == SELF_HANDLED_AGENT
    return result[:limit] if limit else result


def account_statement(ctx, bank_name):
    """
    كشف حساب بنك مُستخرج من السجلات (لا يوجد سجل حركات مخزن)

    كل حركة: {date, type, description, amount, reference}
    المبلغ موجب للإيداع وسالب للسحب
    """
    entries = []

    for tx in ctx.query(Transaction).filter(Transaction.payment_method == bank_name).all():
        entries.append({
            'date': tx.created_at,
            'type': 'transaction',
            'description': f'معاملة #{tx.serial_no} - {tx.type} - {tx.client_name}',
            'amount': round(tx.client_price, 2),
            'status': tx.status,
            'reference': tx.id,
        })

    for expense in ctx.query(Expense).filter(Expense.bank == bank_name).all():
        entries.append({
            'date': expense.date,
            'type': expense.kind if expense.kind != 'general' else 'expense',
            'description': expense.title,
            'amount': -round(expense.amount, 2),
            'reference': expense.id,
        })

    for transfer in ctx.query(AgentTransfer).filter(AgentTransfer.bank == bank_name).all():
        entries.append({
            'date': transfer.date,
            'type': 'agent_transfer',
            'description': f'تحويل مستحقات المعقب {transfer.agent_name} ({transfer.transaction_count} معاملة)',
            'amount': -round(transfer.amount, 2),
            'reference': transfer.id,
        })

    for refund in ctx.query(ClientRefund).filter(ClientRefund.bank == bank_name).all():
        entries.append({
            'date': refund.date,
            'type': 'client_refund',
            'description': f'استرجاع للعميل {refund.client_name} ({refund.transaction_count} معاملة)',
            'amount': -round(refund.amount, 2),
            'pool': 'pending',
            'reference': refund.id,
        })

    entries.sort(key=lambda e: e['date'])
    for entry in entries:
        entry['date'] = entry['date'].isoformat()
    return entries
