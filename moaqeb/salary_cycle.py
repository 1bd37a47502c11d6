"""
حاسبة دورة الرواتب
====================

قواعد التواريخ والمبالغ فقط (بدون قاعدة بيانات):
- بداية يوم 1: الدورة التالية تبدأ أول الشهر القادم
- غير ذلك: الدورة التالية بعد 30 يوماً بالضبط
- نهاية الدورة = بداية الدورة التالية - يوم
"""

from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from moaqeb.config import SALARY_CYCLE_DAYS


def as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


def next_cycle_start(start):
    start = as_date(start)
    if start.day == 1:
        return start + relativedelta(months=1)
    return start + timedelta(days=SALARY_CYCLE_DAYS)


def cycle_end(start):
    return next_cycle_start(start) - timedelta(days=1)


def is_salary_due(start, today) -> bool:
    return as_date(today) >= next_cycle_start(start)


def days_since(start, today) -> int:
    return (as_date(today) - as_date(start)).days


def transaction_commission(client_price, agent_price, rate) -> float:
    """عمولة معاملة واحدة: max(0, سعر العميل - سعر المعقب) × النسبة%"""
    margin = max(0.0, float(client_price or 0.0) - float(agent_price or 0.0))
    return margin * float(rate or 0.0) / 100


def accrued_commission(price_pairs, rate) -> float:
    """مجموع العمولات لقائمة (سعر العميل, سعر المعقب)"""
    return round(sum(transaction_commission(cp, ap, rate) for cp, ap in price_pairs), 2)


def remaining_commission(accrued, paid) -> float:
    return round(max(0.0, float(accrued or 0.0) - float(paid or 0.0)), 2)


def termination_payout(salary_type, monthly_amount, start, today) -> float:
    """
    مستحقات نهاية الخدمة
    - شهري / الاثنين: (الراتب / 30) × max(1, الأيام منذ بداية الدورة)
    - عمولة فقط: صفر
    """
    if salary_type not in ('monthly', 'both'):
        return 0.0
    daily_rate = float(monthly_amount or 0.0) / SALARY_CYCLE_DAYS
    return round(daily_rate * max(1, days_since(start, today)), 2)
