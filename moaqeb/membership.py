"""
العضويات وحدود الباقات
========================

- effective_role: المكان الوحيد الذي يُحدد فيه الدور الفعلي (تخفيض الذهبي المنتهي)
- check_limit / ensure_within_limit: بوابة الحدود قبل أي إنشاء
- can_access_feature / ensure_feature: صلاحيات الميزات حسب الدور
"""

import json
import logging
from collections import namedtuple
from datetime import datetime, timedelta

from moaqeb.config import DEFAULT_LIMITS, SUBSCRIPTION_DURATIONS
from moaqeb.errors import LimitExceededError, PermissionDeniedError, ValidationError
from moaqeb.models import AppSettings, User, db

LOGGER = logging.getLogger(__name__)


LimitDecision = namedtuple('LimitDecision', ['allowed', 'tier', 'limit', 'count'])

UPSELL_MESSAGES = {
    'visitor': 'عفواً، لقد تجاوزت الحد المسموح للزوار. يرجى التسجيل لحفظ بياناتك والاستفادة من مزايا التطبيق.',
    'member': 'لقد وصلت للحد الأقصى المسموح به لعضويتك الحالية. اشترك الآن في الباقة الذهبية (PRO) واحصل على حدود لا نهائية وتقارير متكاملة.',
    'golden': 'عفواً، لقد تجاوزت الحد المسموح به للعضوية الذهبية. يرجى التواصل مع الإدارة لزيادة الحد.',
}

FEATURE_DENIED_MESSAGE = 'هذه الميزة متاحة للأعضاء الذهبيين فقط'


# ==========================================
# الدور الفعلي
# ==========================================

def _golden_active(user, now):
    if user.role != 'golden':
        return False
    if user.subscription_expiry is None:
        return True
    return user.subscription_expiry > now


def effective_role(user, now=None):
    """
    حساب الدور الفعلي للمستخدم
    - بدون مستخدم: visitor
    - ذهبي منتهي الاشتراك: member
    - موظف: employee طالما المكتب المالك ذهبي فعال، وإلا member
    """
    if user is None:
        return 'visitor'
    now = now or datetime.utcnow()

    if user.role == 'employee':
        parent = user.parent
        if parent is not None and _golden_active(parent, now):
            return 'employee'
        return 'member'

    if user.role == 'golden':
        return 'golden' if _golden_active(user, now) else 'member'

    return 'member'


def is_effectively_golden(user, now=None) -> bool:
    return effective_role(user, now) == 'golden'


def extend_subscription(user: User, duration: str, now=None):
    """ترقية المكتب للباقة الذهبية أو تمديدها (شهر / سنة)"""
    days = SUBSCRIPTION_DURATIONS.get(duration)
    if days is None:
        raise ValidationError('مدة الاشتراك غير معروفة', duration=duration)
    now = now or datetime.utcnow()
    base = user.subscription_expiry if _golden_active(user, now) and user.subscription_expiry else now
    user.role = 'golden'
    user.subscription_expiry = base + timedelta(days=days)
    db.session.commit()
    LOGGER.info('Subscription for user %s extended to %s', user.id, user.subscription_expiry)
    return user


def expired_golden_users(now=None):
    """المكاتب الذهبية التي انتهى اشتراكها (تُعامل كعضو عادي)"""
    now = now or datetime.utcnow()
    return User.query.filter(
        User.role == 'golden',
        User.subscription_expiry.isnot(None),
        User.subscription_expiry <= now,
    ).all()


# ==========================================
# الإعدادات العامة
# ==========================================

def get_settings() -> AppSettings:
    settings = AppSettings.query.first()
    if settings is None:
        settings = AppSettings()
        db.session.add(settings)
        db.session.commit()
    return settings


def update_settings(limits=None, feature_permissions=None, banks=None) -> AppSettings:
    settings = get_settings()
    if limits is not None:
        settings.limits = json.dumps(limits, ensure_ascii=False)
    if feature_permissions is not None:
        settings.feature_permissions = json.dumps(feature_permissions, ensure_ascii=False)
    if banks is not None:
        names = [str(b.get('name') or '').strip() for b in banks]
        if not names or any(not n for n in names) or len(set(names)) != len(names):
            raise ValidationError('قائمة البنوك غير صالحة')
        settings.banks = json.dumps(banks, ensure_ascii=False)
    db.session.commit()
    return settings


# ==========================================
# بوابة الحدود
# ==========================================

def limit_tier(role):
    # الموظف يستخدم حدود الباقة الذهبية
    if role == 'employee':
        return 'golden'
    if role not in DEFAULT_LIMITS:
        return 'visitor'
    return role


def check_limit(role, kind, count, limits=None) -> LimitDecision:
    """مقارنة العدد الحالي بسقف الباقة"""
    tier = limit_tier(role)
    if limits is None:
        limits = get_settings().get_limits()
    ceiling = int(limits[tier][kind])
    return LimitDecision(allowed=count < ceiling, tier=tier, limit=ceiling, count=count)


def ensure_within_limit(ctx, kind, model):
    """يرفع LimitExceededError إذا وصل المكتب لسقف الباقة"""
    count = ctx.query(model).count()
    decision = check_limit(ctx.role, kind, count)
    if not decision.allowed:
        LOGGER.warning('Limit reached: office=%s tier=%s kind=%s count=%s',
                       ctx.office_id, decision.tier, kind, count)
        raise LimitExceededError(UPSELL_MESSAGES[decision.tier], tier=decision.tier, kind=kind)
    return decision


# ==========================================
# صلاحيات الميزات
# ==========================================

def can_access_feature(role, feature, permissions=None) -> bool:
    if permissions is None:
        permissions = get_settings().get_feature_permissions()
    allowed = permissions.get(feature)
    if allowed is None:
        return True
    return role in allowed


def ensure_feature(ctx, feature):
    if not can_access_feature(ctx.role, feature):
        LOGGER.warning('Feature %s denied for role %s', feature, ctx.role)
        raise PermissionDeniedError(FEATURE_DENIED_MESSAGE, feature=feature)
