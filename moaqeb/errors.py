"""
أخطاء دفتر الحسابات
====================

كل أخطاء العمليات المالية ترث من LedgerError (وهو ValueError) حتى تستطيع
الـ routes تحويلها إلى رد JSON برسالة عربية ورمز حالة مناسب.
"""

from flask import jsonify


class LedgerError(ValueError):
    code = 'ledger_error'
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        data = {
            'success': False,
            'message': self.message,
            'error': self.code,
        }
        data.update(self.details)
        return data


class ValidationError(LedgerError):
    code = 'validation_error'


class InsufficientFundsError(LedgerError):
    code = 'insufficient_funds'


class NotFoundError(LedgerError):
    code = 'not_found'
    status_code = 404


class InvalidStateError(LedgerError):
    code = 'invalid_state'
    status_code = 409


class ConcurrentUpdateError(LedgerError):
    code = 'concurrent_update'
    status_code = 409


class PermissionDeniedError(LedgerError):
    code = 'permission_denied'
    status_code = 403


class LimitExceededError(LedgerError):
    """تجاوز حد الباقة - الواجهة تعرض نافذة ترقية بدلاً من رسالة خطأ"""
    code = 'limit_exceeded'
    status_code = 403

    def __init__(self, message, tier, kind):
        super().__init__(message, tier=tier, kind=kind, upsell=True)
        self.tier = tier
        self.kind = kind


def error_response(exc):
    """تحويل LedgerError إلى رد JSON"""
    return jsonify(exc.to_dict()), exc.status_code
