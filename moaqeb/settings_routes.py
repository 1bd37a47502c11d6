"""
Routes للإعدادات والعضوية والنسخ الاحتياطي
=============================================

Endpoints:
- GET  /api/settings     - الحدود وصلاحيات الميزات والبنوك
- PUT  /api/settings     - تحديث الإعدادات (مدير فقط)
- GET  /api/membership   - الدور الفعلي وحدود الباقة والاستهلاك الحالي
- GET  /api/backup       - تصدير نسخة احتياطية
- POST /api/restore      - استعادة نسخة احتياطية (استبدال كامل)
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import backup, membership
from moaqeb.auth_decorators import require_admin, with_ledger_context
from moaqeb.config import LIMIT_KINDS
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import Agent, Client, Expense, Transaction, db

settings_bp = Blueprint('settings', __name__)

_COUNTED = {'transactions': Transaction, 'clients': Client, 'agents': Agent, 'expenses': Expense}


@settings_bp.route('/settings', methods=['GET'])
def get_settings():
    return jsonify({'success': True, 'settings': membership.get_settings().to_dict()}), 200


@settings_bp.route('/settings', methods=['PUT'])
@require_admin
def update_settings():
    try:
        data = request.get_json() or {}
        settings = membership.update_settings(
            limits=data.get('limits'),
            feature_permissions=data.get('feature_permissions'),
            banks=data.get('banks'),
        )
        return jsonify({'success': True, 'message': 'تم حفظ الإعدادات', 'settings': settings.to_dict()}), 200
    except LedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@settings_bp.route('/membership', methods=['GET'])
@with_ledger_context
def get_membership():
    """الدور الفعلي للمستخدم وما تبقى من حدود الباقة"""
    ctx = g.ledger
    settings = membership.get_settings()
    limits = settings.get_limits()
    usage = {}
    for kind in LIMIT_KINDS:
        decision = membership.check_limit(ctx.role, kind, ctx.query(_COUNTED[kind]).count(), limits)
        usage[kind] = {'count': decision.count, 'limit': decision.limit, 'allowed': decision.allowed}
    permissions = settings.get_feature_permissions()
    user = g.current_user
    return jsonify({
        'success': True,
        'role': ctx.role,
        'tier': membership.limit_tier(ctx.role),
        'subscription_expiry': user.subscription_expiry.isoformat() if user and user.subscription_expiry else None,
        'usage': usage,
        'features': {name: membership.can_access_feature(ctx.role, name, permissions) for name in permissions}
    }), 200


@settings_bp.route('/backup', methods=['GET'])
@with_ledger_context
def export_backup():
    try:
        return jsonify(backup.export_backup(g.ledger)), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@settings_bp.route('/restore', methods=['POST'])
@with_ledger_context
def restore_backup():
    try:
        counts = backup.restore_backup(g.ledger, request.get_json(silent=True))
        return jsonify({'success': True, 'message': 'تمت استعادة النسخة الاحتياطية', 'restored': counts}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500
