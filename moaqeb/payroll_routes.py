"""
Routes للموظفين والرواتب
==========================

Endpoints:
- GET/POST /api/payroll/employees
- GET      /api/payroll/employees/<id>/salary            - حالة الراتب والعمولة
- POST     /api/payroll/employees/<id>/salary            - حفظ إعداد الراتب (مرة واحدة)
- POST     /api/payroll/employees/<id>/pay-salary        - صرف الراتب الشهري {bank}
- POST     /api/payroll/employees/<id>/pay-commission    - صرف العمولة {bank}
- POST     /api/payroll/employees/<id>/stop              - إيقاف عن العمل {bank}
- DELETE   /api/payroll/employees/<id>                   - نقل للأرشيف
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import payroll
from moaqeb.auth_decorators import require_auth
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import db

payroll_bp = Blueprint('payroll', __name__)


def _server_error(e):
    db.session.rollback()
    return jsonify({'success': False, 'message': str(e)}), 500


@payroll_bp.route('/payroll/employees', methods=['GET'])
@require_auth
def get_employees():
    employees = payroll.list_employees(g.ledger)
    result = []
    for employee in employees:
        data = employee.to_dict()
        config = employee.salary_config
        data['salary_config'] = config.to_dict() if config else None
        result.append(data)
    return jsonify({'success': True, 'employees': result, 'count': len(result)}), 200


@payroll_bp.route('/payroll/employees', methods=['POST'])
@require_auth
def create_employee():
    try:
        data = request.get_json() or {}
        employee = payroll.create_employee(g.ledger, data.get('name'), data.get('password'), data.get('phone'))
        return jsonify({
            'success': True,
            'message': 'تم إضافة الموظف',
            'employee': employee.to_dict(),
            'username': employee.phone
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>/salary', methods=['GET'])
@require_auth
def get_salary_status(employee_id):
    try:
        return jsonify({'success': True, **payroll.salary_status(g.ledger, employee_id)}), 200
    except LedgerError as e:
        return error_response(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>/salary', methods=['POST'])
@require_auth
def save_salary(employee_id):
    try:
        config = payroll.save_salary_config(g.ledger, employee_id, request.get_json() or {})
        return jsonify({
            'success': True,
            'message': 'تم حفظ إعدادات الراتب وقفلها',
            'config': config.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>/pay-salary', methods=['POST'])
@require_auth
def pay_salary(employee_id):
    try:
        data = request.get_json() or {}
        expense = payroll.pay_monthly_salary(g.ledger, employee_id, data.get('bank'))
        return jsonify({'success': True, 'message': 'تم صرف الراتب', 'expense': expense.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>/pay-commission', methods=['POST'])
@require_auth
def pay_commission(employee_id):
    try:
        data = request.get_json() or {}
        expense = payroll.pay_commission(g.ledger, employee_id, data.get('bank'))
        return jsonify({'success': True, 'message': 'تم صرف العمولة', 'expense': expense.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>/stop', methods=['POST'])
@require_auth
def stop_employee(employee_id):
    try:
        data = request.get_json() or {}
        result = payroll.stop_employee(g.ledger, employee_id, data.get('bank'))
        expense = result['expense']
        return jsonify({
            'success': True,
            'message': 'تم إيقاف الموظف عن العمل',
            'payout': result['payout'],
            'expense': expense.to_dict() if expense else None
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@payroll_bp.route('/payroll/employees/<int:employee_id>', methods=['DELETE'])
@require_auth
def archive_employee(employee_id):
    try:
        payroll.archive_employee(g.ledger, employee_id)
        return jsonify({'success': True, 'message': 'تم نقل الموظف للأرشيف'}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)
