"""
رواتب الموظفين
===============

- إعداد الراتب يُقفل بعد أول حفظ
- الراتب الشهري يُصرف عند حلول الدورة ثم تُرحل بداية الدورة
- العمولة = مجموع (سعر العميل - سعر المعقب) × النسبة للمعاملات المنجزة
  للمعقبين المرتبطين بالموظف، ناقص ما صُرف سابقاً
- إيقاف الموظف يصرف مستحقات نهاية الخدمة، والأرشفة تحذفه نهائياً
"""

import logging
from datetime import date

from sqlalchemy import func, update

from moaqeb import change_feed, salary_cycle
from moaqeb.config import MAX_EMPLOYEES_PER_OFFICE, SALARY_TYPES
from moaqeb.contacts import normalize_phone
from moaqeb.errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from moaqeb.expenses_service import record_expense
from moaqeb.models import Agent, Expense, SalaryConfig, Transaction, User, db
from moaqeb.transactions_service import parse_amount

LOGGER = logging.getLogger(__name__)


# ==========================================
# الموظفين
# ==========================================

def list_employees(ctx):
    if ctx.office_id is None:
        return []
    return (User.query
            .filter(User.role == 'employee', User.parent_id == ctx.office_id)
            .order_by(User.id)
            .all())


def get_employee(ctx, employee_id) -> User:
    employee = db.session.get(User, int(employee_id))
    if employee is None or employee.role != 'employee' or ctx.office_id is None \
            or employee.parent_id != ctx.office_id:
        raise NotFoundError('الموظف غير موجود', employee_id=employee_id)
    return employee


def _ensure_owner(ctx):
    # الموظف والمالك المنتهي اشتراكه لا يديران الرواتب
    if ctx.user is None or ctx.role != 'golden':
        raise PermissionDeniedError('إدارة الموظفين متاحة للأعضاء الذهبيين فقط')
    return ctx.user


def _employee_username(owner):
    n = owner.employees.count() + 1
    while True:
        username = f'EMP-{owner.id}-{n}'
        if not User.query.filter_by(phone=username).first():
            return username
        n += 1


def create_employee(ctx, name, password, phone=None) -> User:
    """إضافة موظف تابع للمكتب (حد أقصى موظفين اثنين)"""
    owner = _ensure_owner(ctx)
    name = (name or '').strip()
    if not name:
        raise ValidationError('يرجى إدخال اسم الموظف')
    if not password or len(password) < 4:
        raise ValidationError('كلمة المرور قصيرة جداً')
    if owner.employees.count() >= MAX_EMPLOYEES_PER_OFFICE:
        raise ValidationError(
            f'عذراً، الحد الأقصى المسموح به هو موظفين اثنين ({MAX_EMPLOYEES_PER_OFFICE}) فقط.')

    username = normalize_phone(phone) if phone else _employee_username(owner)
    if User.query.filter_by(phone=username).first():
        raise ValidationError('رقم الجوال مسجل مسبقاً')

    employee = User(
        office_name=name,
        phone=username,
        role='employee',
        parent_id=owner.id,
    )
    employee.set_password(password)
    try:
        db.session.add(employee)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Employee %s created for office %s', employee.id, owner.id)
    return employee


# ==========================================
# إعداد الراتب
# ==========================================

def get_salary_config(ctx, employee_id, required=True):
    employee = get_employee(ctx, employee_id)
    config = SalaryConfig.query.filter_by(employee_id=employee.id).first()
    if config is None and required:
        raise NotFoundError('لم يتم إعداد راتب لهذا الموظف', employee_id=employee.id)
    return config


def save_salary_config(ctx, employee_id, data) -> SalaryConfig:
    """حفظ إعداد الراتب - يُقفل بعد أول حفظ"""
    _ensure_owner(ctx)
    employee = get_employee(ctx, employee_id)
    config = SalaryConfig.query.filter_by(employee_id=employee.id).first()
    if config is not None and config.is_locked:
        raise InvalidStateError('إعدادات الراتب مقفلة ولا يمكن تعديلها')

    salary_type = data.get('salary_type') or 'monthly'
    if salary_type not in SALARY_TYPES:
        raise ValidationError('نوع الراتب غير معروف', salary_type=salary_type)
    try:
        start_date = salary_cycle.as_date(data.get('start_date')) or date.today()
    except ValueError:
        raise ValidationError('تاريخ بداية العمل غير صحيح')

    amount = 0.0
    rate = 0.0
    if salary_type in ('monthly', 'both'):
        amount = parse_amount(data.get('amount'), 'الراتب الشهري')
    if salary_type in ('commission', 'both'):
        rate = parse_amount(data.get('rate'), 'نسبة العمولة')
        if rate > 100:
            raise ValidationError('نسبة العمولة لا تتجاوز 100%')

    if config is None:
        config = SalaryConfig(employee_id=employee.id)
        db.session.add(config)
    config.start_date = start_date
    config.salary_type = salary_type
    config.amount = amount
    config.rate = rate
    config.is_locked = True
    config.is_stopped = False
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Salary config saved for employee %s (%s)', employee.id, salary_type)
    return config


# ==========================================
# العمولات
# ==========================================

def commission_pairs(ctx, employee_id):
    """(سعر العميل, سعر المعقب) للمعاملات المنجزة لمعقبين مرتبطين بالموظف"""
    return (ctx.query(Transaction)
            .join(Agent, Agent.id == Transaction.agent_id)
            .filter(Agent.employee_id == employee_id, Transaction.status == 'completed')
            .with_entities(Transaction.client_price, Transaction.agent_price)
            .all())


def paid_commission(ctx, employee_id):
    total = (ctx.query(Expense)
             .filter(Expense.kind == 'commission', Expense.employee_id == employee_id)
             .with_entities(func.coalesce(func.sum(Expense.amount), 0.0))
             .scalar())
    return round(total or 0.0, 2)


def commission_summary(ctx, config):
    if not config.includes_commission:
        return {'accrued': 0.0, 'paid': 0.0, 'remaining': 0.0}
    accrued = salary_cycle.accrued_commission(commission_pairs(ctx, config.employee_id), config.rate)
    paid = paid_commission(ctx, config.employee_id)
    return {
        'accrued': accrued,
        'paid': paid,
        'remaining': salary_cycle.remaining_commission(accrued, paid),
    }


def salary_status(ctx, employee_id, today=None):
    config = get_salary_config(ctx, employee_id)
    today = today or date.today()
    next_start = salary_cycle.next_cycle_start(config.start_date)
    return {
        'config': config.to_dict(),
        'next_cycle_start': next_start.isoformat(),
        'cycle_end': salary_cycle.cycle_end(config.start_date).isoformat(),
        'is_due': config.includes_monthly and not config.is_stopped
                  and salary_cycle.is_salary_due(config.start_date, today),
        'commission': commission_summary(ctx, config),
    }


# ==========================================
# الصرف
# ==========================================

def _ensure_running(config):
    if config.is_stopped:
        raise InvalidStateError('الموظف موقوف عن العمل')


def pay_monthly_salary(ctx, employee_id, bank_name, today=None) -> Expense:
    """صرف الراتب الشهري وترحيل بداية الدورة"""
    _ensure_owner(ctx)
    config = get_salary_config(ctx, employee_id)
    employee = config.employee
    today = today or date.today()
    _ensure_running(config)
    if not config.includes_monthly or config.amount <= 0:
        raise ValidationError('لا يوجد راتب شهري لهذا الموظف')
    if not salary_cycle.is_salary_due(config.start_date, today):
        raise InvalidStateError('لم يحن موعد الراتب بعد',
                                next_cycle_start=salary_cycle.next_cycle_start(config.start_date).isoformat())

    period_start = config.start_date
    period_end = salary_cycle.cycle_end(period_start)
    try:
        expense = record_expense(
            ctx,
            f'راتب شهري - {employee.office_name}',
            round(config.amount, 2),
            bank_name,
            kind='salary',
            employee_id=employee.id,
            period_start=period_start,
            period_end=period_end,
        )
        config.start_date = salary_cycle.next_cycle_start(period_start)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Salary paid to employee %s for %s..%s', employee.id, period_start, period_end)
    return expense


def pay_commission(ctx, employee_id, bank_name, today=None) -> Expense:
    _ensure_owner(ctx)
    config = get_salary_config(ctx, employee_id)
    employee = config.employee
    remaining = commission_summary(ctx, config)['remaining']
    if remaining <= 0:
        raise ValidationError('لا توجد عمولات مستحقة')
    try:
        expense = record_expense(
            ctx,
            f'عمولة - {employee.office_name}',
            remaining,
            bank_name,
            kind='commission',
            employee_id=employee.id,
            period_start=config.start_date,
            period_end=today or date.today(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Commission %s paid to employee %s', remaining, employee.id)
    return expense


def stop_employee(ctx, employee_id, bank_name=None, today=None):
    """
    إيقاف الموظف عن العمل
    - مرفوض إذا بقيت عمولات غير مصروفة
    - يصرف مستحقات الأيام المنقضية من الدورة (إن وجدت)
    """
    _ensure_owner(ctx)
    config = get_salary_config(ctx, employee_id)
    employee = config.employee
    today = today or date.today()
    _ensure_running(config)

    remaining = commission_summary(ctx, config)['remaining']
    if remaining > 0:
        raise InvalidStateError('يجب صرف العمولات المستحقة قبل إيقاف الموظف', remaining=remaining)

    payout = salary_cycle.termination_payout(config.salary_type, config.amount, config.start_date, today)
    expense = None
    try:
        if payout > 0:
            expense = record_expense(
                ctx,
                f'مستحقات نهاية خدمة - {employee.office_name}',
                payout,
                bank_name,
                kind='termination',
                employee_id=employee.id,
                period_start=config.start_date,
                period_end=today,
            )
        config.is_stopped = True
        config.stopped_at = today
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Employee %s stopped, final payout %s', employee.id, payout)
    return {'payout': payout, 'expense': expense}


def archive_employee(ctx, employee_id):
    """نقل الموظف للأرشيف: حذف نهائي للموظف وإعداد راتبه"""
    _ensure_owner(ctx)
    employee = get_employee(ctx, employee_id)
    config = SalaryConfig.query.filter_by(employee_id=employee.id).first()
    if config is None or not config.is_stopped:
        raise InvalidStateError('يجب إيقاف الموظف قبل نقله للأرشيف')
    try:
        for model in (Agent, Expense):
            ids = [row[0] for row in ctx.query(model).with_entities(model.id).filter(model.employee_id == employee.id)]
            if not ids:
                continue
            db.session.execute(
                update(model).where(model.id.in_(ids))
                .values(employee_id=None).execution_options(synchronize_session='fetch'))
            change_feed.record_many(db.session, model.__tablename__, ctx.feed_key, 'UPDATE', ids)
        db.session.delete(config)
        db.session.delete(employee)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    LOGGER.info('Employee %s archived', employee_id)


def list_due_salaries(today=None):
    """كل الموظفين الذين حل موعد راتبهم (للمجدول)"""
    today = today or date.today()
    configs = (SalaryConfig.query
               .filter(SalaryConfig.is_stopped.is_(False),
                       SalaryConfig.salary_type.in_(('monthly', 'both')))
               .all())
    return [c for c in configs if salary_cycle.is_salary_due(c.start_date, today)]
