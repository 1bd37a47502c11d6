"""
تسوية المستحقات (المعقبين / مرتجعات العملاء)
==============================================

كل تسوية معاملة قاعدة بيانات واحدة:
1. قفل صف البنك (FOR UPDATE)
2. خصم شرطي: UPDATE ... WHERE balance >= due
3. تعليم المعاملات: UPDATE ... WHERE agent_paid = false
   وعدد الصفوف يجب أن يساوي عدد المعاملات المستحقة، وإلا rollback كامل
"""

import logging
from datetime import datetime

from sqlalchemy import func, update

from moaqeb import change_feed, treasury
from moaqeb.contacts import get_agent, get_client
from moaqeb.errors import ConcurrentUpdateError, ValidationError
from moaqeb.models import Agent, AgentTransfer, Client, ClientRefund, Transaction, db

LOGGER = logging.getLogger(__name__)


def _agent_due_query(ctx, agent_id):
    return ctx.query(Transaction).filter(
        Transaction.agent_id == agent_id,
        Transaction.status == 'completed',
        Transaction.agent_paid.is_(False),
    )


def _client_due_query(ctx, client_id):
    return ctx.query(Transaction).filter(
        Transaction.client_id == client_id,
        Transaction.status == 'cancelled',
        Transaction.client_refunded.is_(False),
    )


def agent_payable(ctx, agent_id):
    """مستحقات معقب: مجموع سعر المعقب للمعاملات المنجزة غير المسددة"""
    agent = get_agent(ctx, agent_id)
    rows = _agent_due_query(ctx, agent.id).order_by(Transaction.id).all()
    return {
        'agent_id': agent.id,
        'agent_name': agent.name,
        'due': round(sum(t.agent_price for t in rows), 2),
        'count': len(rows),
        'transactions': [t.to_dict() for t in rows],
    }


def client_refund_due(ctx, client_id):
    """مرتجعات عميل: مجموع سعر العميل للمعاملات الملغاة غير المستردة"""
    client = get_client(ctx, client_id)
    rows = _client_due_query(ctx, client.id).order_by(Transaction.id).all()
    return {
        'client_id': client.id,
        'client_name': client.name,
        'due': round(sum(t.client_price for t in rows), 2),
        'count': len(rows),
        'transactions': [t.to_dict() for t in rows],
    }


def list_agent_payables(ctx):
    rows = (ctx.query(Transaction)
            .join(Agent, Agent.id == Transaction.agent_id)
            .with_entities(Agent.id, Agent.name,
                           func.sum(Transaction.agent_price), func.count(Transaction.id))
            .filter(Transaction.status == 'completed', Transaction.agent_paid.is_(False))
            .group_by(Agent.id, Agent.name)
            .all())
    return [
        {'agent_id': agent_id, 'agent_name': name, 'due': round(total or 0.0, 2), 'count': count}
        for agent_id, name, total, count in rows
        if (total or 0.0) > 0
    ]


def list_client_refunds_due(ctx):
    rows = (ctx.query(Transaction)
            .join(Client, Client.id == Transaction.client_id)
            .with_entities(Client.id, Client.name,
                           func.sum(Transaction.client_price), func.count(Transaction.id))
            .filter(Transaction.status == 'cancelled', Transaction.client_refunded.is_(False))
            .group_by(Client.id, Client.name)
            .all())
    return [
        {'client_id': client_id, 'client_name': name, 'due': round(total or 0.0, 2), 'count': count}
        for client_id, name, total, count in rows
        if (total or 0.0) > 0
    ]


def _mark(ctx, rows, flag):
    """تعليم المعاملات بشرط أنها لم تُعلم من عملية أخرى"""
    ids = [t.id for t in rows]
    column = getattr(Transaction, flag)
    result = db.session.execute(
        update(Transaction)
        .where(Transaction.id.in_(ids), column.is_(False))
        .values({flag: True})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(ids):
        raise ConcurrentUpdateError('تمت تسوية بعض المعاملات من عملية أخرى، يرجى التحديث والمحاولة مجدداً')
    for tx in rows:
        db.session.expire(tx, [flag])
        change_feed.record(db.session, Transaction.__tablename__, ctx.feed_key, 'UPDATE', tx.id)


def settle_agent(ctx, agent_id, bank_name, now=None) -> AgentTransfer:
    """
    تسوية كامل مستحقات المعقب من بنك واحد
    - الرصيد الفعلي للبنك يجب أن يغطي كامل المبلغ
    - يُخصم من الرصيد الفعلي ومن المعلق (بحد أدنى صفر)
    """
    agent = get_agent(ctx, agent_id)
    try:
        account = treasury.get_account(ctx, bank_name, lock=True)
        rows = _agent_due_query(ctx, agent.id).with_for_update().all()
        due = round(sum(t.agent_price for t in rows), 2)
        if not rows or due <= 0:
            raise ValidationError('لا توجد مستحقات لهذا المعقب')

        treasury.apply_delta(account, balance_delta=-due, pending_delta=-due,
                             require_balance=True, floor_pending=True)
        _mark(ctx, rows, 'agent_paid')

        transfer = AgentTransfer(
            **ctx.owner_fields(),
            agent_id=agent.id,
            agent_name=agent.name,
            amount=due,
            bank=account.name,
            date=now or datetime.utcnow(),
            transaction_count=len(rows),
            created_by=ctx.actor,
        )
        db.session.add(transfer)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    LOGGER.info('Agent %s settled: %s from %s (%s transactions)',
                agent.name, due, transfer.bank, transfer.transaction_count)
    return transfer


def settle_client_refund(ctx, client_id, bank_name, now=None) -> ClientRefund:
    """
    استرجاع مبالغ المعاملات الملغاة للعميل
    يُخصم من الرصيد المعلق فقط ويجب أن يغطي كامل المبلغ
    """
    client = get_client(ctx, client_id)
    try:
        account = treasury.get_account(ctx, bank_name, lock=True)
        rows = _client_due_query(ctx, client.id).with_for_update().all()
        due = round(sum(t.client_price for t in rows), 2)
        if not rows or due <= 0:
            raise ValidationError('لا توجد مرتجعات لهذا العميل')

        treasury.apply_delta(account, pending_delta=-due, require_pending=True)
        _mark(ctx, rows, 'client_refunded')

        refund = ClientRefund(
            **ctx.owner_fields(),
            client_id=client.id,
            client_name=client.name,
            amount=due,
            bank=account.name,
            date=now or datetime.utcnow(),
            transaction_count=len(rows),
            created_by=ctx.actor,
        )
        db.session.add(refund)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    LOGGER.info('Client %s refunded: %s from pending %s (%s transactions)',
                client.name, due, refund.bank, refund.transaction_count)
    return refund


def list_agent_transfers(ctx, agent_id=None):
    query = ctx.query(AgentTransfer)
    if agent_id is not None:
        query = query.filter(AgentTransfer.agent_id == agent_id)
    return query.order_by(AgentTransfer.date.desc()).all()


def list_client_refunds(ctx, client_id=None):
    query = ctx.query(ClientRefund)
    if client_id is not None:
        query = query.filter(ClientRefund.client_id == client_id)
    return query.order_by(ClientRefund.date.desc()).all()
