"""
Decorators للمصادقة وسياق المكتب
==================================

يحتوي على:
- generate_token / decode_token: إنشاء وفك JWT
- get_current_user: المستخدم الحالي من Authorization header
- @require_auth: التحقق من تسجيل الدخول
- @with_ledger_context: مصادقة اختيارية، الزائر يحصل على سياق visitor
"""

import logging
import re
from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import g, jsonify, request

from moaqeb.config import (
    GUEST_DEVICE_HEADER,
    JWT_ACCESS_TOKEN_EXP_MINUTES,
    JWT_ALGORITHM,
    JWT_DEV_FALLBACK_SECRET,
    JWT_SECRET_KEY,
)
from moaqeb.ledger_context import LedgerContext
from moaqeb.models import User, db

LOGGER = logging.getLogger(__name__)

DEVICE_ID_RE = re.compile(r'^[A-Za-z0-9_-]{8,64}$')


def _secret_key():
    if JWT_SECRET_KEY:
        return JWT_SECRET_KEY
    # بيئة تطوير فقط
    return JWT_DEV_FALLBACK_SECRET


def generate_token(user):
    """
    إنشاء JWT token للمستخدم

    Parameters:
    -----------
    user : User
        كائن المستخدم

    Returns:
    --------
    str
        JWT token
    """
    payload = {
        'user_id': user.id,
        'role': user.role,
        'office_id': user.office_id,
        'exp': datetime.utcnow() + timedelta(minutes=JWT_ACCESS_TOKEN_EXP_MINUTES),
        'iat': datetime.utcnow(),
    }
    return jwt.encode(payload, _secret_key(), algorithm=JWT_ALGORITHM)


def decode_token(token):
    """فك تشفير JWT token - None إذا كان منتهياً أو غير صالح"""
    try:
        return jwt.decode(token, _secret_key(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_current_user():
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None

    payload = decode_token(auth_header.split('Bearer ')[1])
    if not payload:
        return None

    return db.session.get(User, payload.get('user_id'))


def require_auth(f):
    """
    Decorator للتحقق من تسجيل الدخول

    Usage:
    ------
    @bp.route('/payroll/employees')
    @require_auth
    def employees():
        ctx = g.ledger
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({
                'success': False,
                'message': 'يجب تسجيل الدخول أولاً',
                'error': 'authentication_required'
            }), 401

        g.current_user = user
        g.ledger = LedgerContext.for_user(user)
        return f(*args, **kwargs)

    return decorated_function


def get_guest_key():
    """معرف جهاز الزائر من الـ header - None إذا كان مفقوداً أو غير صالح"""
    device_id = (request.headers.get(GUEST_DEVICE_HEADER) or '').strip()
    if not DEVICE_ID_RE.match(device_id):
        return None
    return device_id


def with_ledger_context(f):
    """
    مصادقة اختيارية - بدون token يعمل الطلب على بيانات جهاز الزائر
    (X-Device-Id)، وبدون معرف جهاز يُرفض الطلب
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        guest_key = None
        if user is None:
            guest_key = get_guest_key()
            if guest_key is None:
                return jsonify({
                    'success': False,
                    'message': 'يجب تسجيل الدخول أو إرسال معرف الجهاز',
                    'error': 'device_id_required'
                }), 401
        g.current_user = user
        g.ledger = LedgerContext.for_user(user, guest_key=guest_key)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    @wraps(f)
    @require_auth
    def decorated_function(*args, **kwargs):
        if not g.current_user.is_admin:
            return jsonify({
                'success': False,
                'message': 'هذه الصفحة متاحة للمديرين فقط',
                'error': 'admin_required'
            }), 403
        return f(*args, **kwargs)

    return decorated_function
