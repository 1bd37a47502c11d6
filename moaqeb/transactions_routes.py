"""
Routes للمعاملات
==================

Endpoints:
- GET    /api/transactions                  - قائمة المعاملات (?status=)
- POST   /api/transactions                  - إنشاء معاملة
- GET    /api/transactions/<id>             - معاملة محددة
- GET    /api/transactions/serial/<serial>  - البحث بالرقم التسلسلي
- PUT    /api/transactions/<id>             - تعديل معاملة نشطة
- POST   /api/transactions/<id>/status      - إنجاز / إلغاء
- DELETE /api/transactions/<id>             - حذف (نشطة / ملغاة)
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import transactions_service
from moaqeb.auth_decorators import with_ledger_context
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import db

transactions_bp = Blueprint('transactions', __name__)


@transactions_bp.route('/transactions', methods=['GET'])
@with_ledger_context
def get_transactions():
    """عرض المعاملات"""
    try:
        transactions = transactions_service.list_transactions(g.ledger, request.args.get('status'))
        return jsonify({
            'success': True,
            'transactions': [t.to_dict() for t in transactions],
            'counts': transactions_service.count_by_status(g.ledger),
            'count': len(transactions)
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return jsonify({'success': False, 'message': str(e)}), 500


@transactions_bp.route('/transactions', methods=['POST'])
@with_ledger_context
def create_transaction():
    """إنشاء معاملة جديدة"""
    try:
        data = request.get_json() or {}
        tx = transactions_service.create_transaction(g.ledger, data)
        return jsonify({
            'success': True,
            'message': 'تم حفظ المعاملة بنجاح',
            'transaction': tx.to_dict()
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@transactions_bp.route('/transactions/<int:transaction_id>', methods=['GET'])
@with_ledger_context
def get_transaction(transaction_id):
    try:
        tx = transactions_service.get_transaction(g.ledger, transaction_id)
        return jsonify({'success': True, 'transaction': tx.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)


@transactions_bp.route('/transactions/serial/<serial_no>', methods=['GET'])
@with_ledger_context
def get_transaction_by_serial(serial_no):
    """استعلام العميل عن معاملته بالرقم التسلسلي"""
    try:
        tx = transactions_service.find_by_serial(g.ledger, serial_no)
        return jsonify({'success': True, 'transaction': tx.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)


@transactions_bp.route('/transactions/<int:transaction_id>', methods=['PUT'])
@with_ledger_context
def update_transaction(transaction_id):
    """تعديل معاملة نشطة"""
    try:
        data = request.get_json() or {}
        tx = transactions_service.edit_transaction(g.ledger, transaction_id, data)
        return jsonify({
            'success': True,
            'message': 'تم تعديل المعاملة بنجاح',
            'transaction': tx.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@transactions_bp.route('/transactions/<int:transaction_id>/status', methods=['POST'])
@with_ledger_context
def change_status(transaction_id):
    """تغيير حالة المعاملة (completed / cancelled)"""
    try:
        data = request.get_json() or {}
        tx = transactions_service.update_status(g.ledger, transaction_id, data.get('status'))
        return jsonify({
            'success': True,
            'message': 'تم تحديث حالة المعاملة',
            'transaction': tx.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@transactions_bp.route('/transactions/<int:transaction_id>', methods=['DELETE'])
@with_ledger_context
def delete_transaction(transaction_id):
    try:
        transactions_service.delete_transaction(g.ledger, transaction_id)
        return jsonify({'success': True, 'message': 'تم حذف المعاملة'}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500
