"""
المعقبين والعملاء
==================

المعاملات ترتبط بالمعقب / العميل بالمعرف، ويُحفظ الاسم كنسخة للعرض
تُحدث تلقائياً عند تغيير الاسم.
"""

import logging
import re

from sqlalchemy import and_, update

from moaqeb import change_feed
from moaqeb.config import GENERAL_CLIENT_NAME, SELF_HANDLED_AGENT
from moaqeb.errors import InvalidStateError, NotFoundError, ValidationError
from moaqeb.membership import ensure_within_limit
from moaqeb.models import Agent, Client, Transaction, User, db

LOGGER = logging.getLogger(__name__)

SAUDI_MOBILE_RE = re.compile(r'^5[0-9]{8}$')


def normalize_phone(raw):
    """
    توحيد رقم الجوال السعودي إلى 9665XXXXXXXX
    يقبل: 5XXXXXXXX, 05XXXXXXXX, 9665XXXXXXXX, +9665XXXXXXXX
    """
    if raw is None:
        return None
    digits = re.sub(r'\D', '', str(raw))
    if not digits:
        return None
    if digits.startswith('966'):
        digits = digits[3:]
    if digits.startswith('0'):
        digits = digits[1:]
    if not SAUDI_MOBILE_RE.match(digits):
        raise ValidationError('رقم الجوال غير صحيح، يجب أن يبدأ بـ 5 ويتكون من 9 أرقام', phone=raw)
    return f'966{digits}'


def _clean_name(name):
    return (name or '').strip()


def _update_transactions(ctx, condition, **values):
    """تحديث جماعي لمعاملات المكتب مع تسجيلها في قناة التغييرات"""
    ids = [row[0] for row in ctx.query(Transaction).with_entities(Transaction.id).filter(condition)]
    if not ids:
        return 0
    db.session.execute(
        update(Transaction)
        .where(Transaction.id.in_(ids))
        .values(**values)
        .execution_options(synchronize_session='fetch')
    )
    change_feed.record_many(db.session, Transaction.__tablename__, ctx.feed_key, 'UPDATE', ids)
    return len(ids)


# ==========================================
# المعقبين
# ==========================================

def list_agents(ctx):
    return ctx.query(Agent).order_by(Agent.name).all()


def get_agent(ctx, agent_id) -> Agent:
    agent = ctx.query(Agent).filter(Agent.id == agent_id).first()
    if agent is None:
        raise NotFoundError('المعقب غير موجود', agent_id=agent_id)
    return agent


def find_agent_by_name(ctx, name):
    return ctx.query(Agent).filter(Agent.name == _clean_name(name)).first()


def resolve_agent(ctx, agent_id=None, agent_name=None):
    """
    تحديد المعقب لمعاملة
    Returns: (agent أو None للإنجاز الذاتي, الاسم)
    """
    if agent_id:
        agent = get_agent(ctx, agent_id)
        return agent, agent.name
    name = _clean_name(agent_name)
    if not name:
        raise ValidationError('يرجى اختيار المعقب')
    if name == SELF_HANDLED_AGENT:
        return None, SELF_HANDLED_AGENT
    agent = find_agent_by_name(ctx, name)
    if agent is None:
        raise NotFoundError(f'المعقب "{name}" غير موجود', agent_name=name)
    return agent, agent.name


def _check_employee(ctx, employee_id):
    if employee_id in (None, ''):
        return None
    employee = db.session.get(User, int(employee_id))
    if employee is None or employee.role != 'employee' or employee.parent_id != ctx.office_id:
        raise NotFoundError('الموظف غير موجود', employee_id=employee_id)
    return employee.id


def create_agent(ctx, name, phone=None, whatsapp=None, employee_id=None):
    name = _clean_name(name)
    if not name:
        raise ValidationError('يرجى إدخال اسم المعقب')
    if name == SELF_HANDLED_AGENT:
        raise ValidationError('هذا الاسم محجوز')
    if find_agent_by_name(ctx, name):
        raise ValidationError('يوجد معقب بنفس الاسم')

    ensure_within_limit(ctx, 'agents', Agent)
    agent = Agent(
        **ctx.owner_fields(),
        name=name,
        phone=normalize_phone(phone),
        whatsapp=normalize_phone(whatsapp),
        employee_id=_check_employee(ctx, employee_id),
        created_by=ctx.actor,
    )
    try:
        db.session.add(agent)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Agent %s created (office %s)', agent.id, ctx.office_id)
    return agent


def update_agent(ctx, agent_id, data):
    agent = get_agent(ctx, agent_id)
    try:
        if 'name' in data:
            name = _clean_name(data['name'])
            if not name or name == SELF_HANDLED_AGENT:
                raise ValidationError('اسم المعقب غير صالح')
            other = find_agent_by_name(ctx, name)
            if other is not None and other.id != agent.id:
                raise ValidationError('يوجد معقب بنفس الاسم')
            if name != agent.name:
                agent.name = name
                _update_transactions(ctx, Transaction.agent_id == agent.id, agent_name=name)
        if 'phone' in data:
            agent.phone = normalize_phone(data['phone'])
        if 'whatsapp' in data:
            agent.whatsapp = normalize_phone(data['whatsapp'])
        if 'employee_id' in data:
            agent.employee_id = _check_employee(ctx, data['employee_id'])
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return agent


def delete_agent(ctx, agent_id):
    """حذف معقب - مرفوض إذا كانت له مستحقات غير مسددة"""
    agent = get_agent(ctx, agent_id)
    unpaid = agent.transactions.filter(
        Transaction.status.in_(('active', 'completed')),
        Transaction.agent_paid.is_(False),
        Transaction.agent_price > 0,
    ).count()
    if unpaid:
        raise InvalidStateError('لا يمكن حذف معقب لديه معاملات أو مستحقات غير مسددة', count=unpaid)
    try:
        _update_transactions(ctx, Transaction.agent_id == agent.id, agent_id=None)
        db.session.delete(agent)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Agent %s deleted (office %s)', agent_id, ctx.office_id)


# ==========================================
# العملاء
# ==========================================

def list_clients(ctx):
    return ctx.query(Client).order_by(Client.name).all()


def get_client(ctx, client_id) -> Client:
    client = ctx.query(Client).filter(Client.id == client_id).first()
    if client is None:
        raise NotFoundError('العميل غير موجود', client_id=client_id)
    return client


def find_client_by_name(ctx, name):
    return ctx.query(Client).filter(Client.name == _clean_name(name)).first()


def resolve_client(ctx, client_id=None, client_name=None):
    """
    تحديد العميل لمعاملة
    بدون اسم = عميل عام، واسم غير مسجل يُحفظ كنص فقط
    """
    if client_id:
        client = get_client(ctx, client_id)
        return client, client.name
    name = _clean_name(client_name) or GENERAL_CLIENT_NAME
    if name == GENERAL_CLIENT_NAME:
        return None, GENERAL_CLIENT_NAME
    client = find_client_by_name(ctx, name)
    return client, name


def create_client(ctx, name, phone=None, whatsapp=None):
    name = _clean_name(name)
    if not name:
        raise ValidationError('يرجى إدخال اسم العميل')
    if name == GENERAL_CLIENT_NAME:
        raise ValidationError('هذا الاسم محجوز')
    if find_client_by_name(ctx, name):
        raise ValidationError('يوجد عميل بنفس الاسم')

    ensure_within_limit(ctx, 'clients', Client)
    client = Client(
        **ctx.owner_fields(),
        name=name,
        phone=normalize_phone(phone),
        whatsapp=normalize_phone(whatsapp),
        created_by=ctx.actor,
    )
    try:
        db.session.add(client)
        db.session.flush()
        # ربط المعاملات السابقة المسجلة بنفس الاسم
        _update_transactions(ctx, and_(Transaction.client_id.is_(None), Transaction.client_name == name),
                             client_id=client.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Client %s created (office %s)', client.id, ctx.office_id)
    return client


def update_client(ctx, client_id, data):
    client = get_client(ctx, client_id)
    try:
        if 'name' in data:
            name = _clean_name(data['name'])
            if not name or name == GENERAL_CLIENT_NAME:
                raise ValidationError('اسم العميل غير صالح')
            other = find_client_by_name(ctx, name)
            if other is not None and other.id != client.id:
                raise ValidationError('يوجد عميل بنفس الاسم')
            if name != client.name:
                client.name = name
                _update_transactions(ctx, Transaction.client_id == client.id, client_name=name)
        if 'phone' in data:
            client.phone = normalize_phone(data['phone'])
        if 'whatsapp' in data:
            client.whatsapp = normalize_phone(data['whatsapp'])
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return client


def delete_client(ctx, client_id):
    """حذف عميل - مرفوض إذا كانت له مرتجعات غير مسددة"""
    client = get_client(ctx, client_id)
    unrefunded = client.transactions.filter(
        Transaction.status == 'cancelled',
        Transaction.client_refunded.is_(False),
    ).count()
    if unrefunded:
        raise InvalidStateError('لا يمكن حذف عميل لديه مرتجعات غير مسددة', count=unrefunded)
    try:
        _update_transactions(ctx, Transaction.client_id == client.id, client_id=None)
        db.session.delete(client)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Client %s deleted (office %s)', client_id, ctx.office_id)
