"""
Routes للمصروفات
==================

Endpoints:
- GET    /api/expenses        - قائمة المصروفات (?kind=&employee_id=)
- POST   /api/expenses        - إضافة مصروف {title, amount, bank}
- DELETE /api/expenses/<id>   - حذف مصروف وإرجاع مبلغه للبنك
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import expenses_service
from moaqeb.auth_decorators import with_ledger_context
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import db

expenses_bp = Blueprint('expenses', __name__)


@expenses_bp.route('/expenses', methods=['GET'])
@with_ledger_context
def get_expenses():
    expenses = expenses_service.list_expenses(
        g.ledger,
        kind=request.args.get('kind'),
        employee_id=request.args.get('employee_id', type=int),
    )
    return jsonify({
        'success': True,
        'expenses': [e.to_dict() for e in expenses],
        'total': round(sum(e.amount for e in expenses), 2),
        'count': len(expenses)
    }), 200


@expenses_bp.route('/expenses', methods=['POST'])
@with_ledger_context
def create_expense():
    try:
        data = request.get_json() or {}
        expense = expenses_service.add_expense(g.ledger, data.get('title'), data.get('amount'), data.get('bank'))
        return jsonify({
            'success': True,
            'message': 'تم تسجيل المصروف',
            'expense': expense.to_dict()
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@expenses_bp.route('/expenses/<int:expense_id>', methods=['DELETE'])
@with_ledger_context
def delete_expense(expense_id):
    try:
        expenses_service.delete_expense(g.ledger, expense_id)
        return jsonify({'success': True, 'message': 'تم حذف المصروف وإرجاع المبلغ'}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500
