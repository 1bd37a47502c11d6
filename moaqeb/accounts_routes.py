"""
Routes للحسابات البنكية والخزينة
==================================

Endpoints:
- GET  /api/accounts                    - الأرصدة والأرصدة المعلقة وإجمالي الخزينة
- POST /api/accounts/transfer           - تحويل بين حسابين
- POST /api/accounts/zero               - تصفير الخزينة
- GET  /api/accounts/<bank>/statement   - كشف حساب بنك
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import reports, treasury
from moaqeb.auth_decorators import with_ledger_context
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import db

accounts_bp = Blueprint('accounts', __name__)


@accounts_bp.route('/accounts', methods=['GET'])
@with_ledger_context
def get_accounts():
    try:
        accounts = treasury.list_accounts(g.ledger)
        return jsonify({
            'success': True,
            'accounts': [a.to_dict() for a in accounts],
            'balances': {a.name: round(a.balance, 2) for a in accounts},
            'pending_balances': {a.name: round(a.pending_balance, 2) for a in accounts},
            'treasury_total': treasury.treasury_total(g.ledger)
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@accounts_bp.route('/accounts/transfer', methods=['POST'])
@with_ledger_context
def transfer():
    """تحويل رصيد بين حسابين"""
    try:
        data = request.get_json() or {}
        source, target = treasury.transfer_between_accounts(
            g.ledger, data.get('from'), data.get('to'), data.get('amount'))
        return jsonify({
            'success': True,
            'message': 'تم التحويل بنجاح',
            'from': source.to_dict(),
            'to': target.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@accounts_bp.route('/accounts/zero', methods=['POST'])
@with_ledger_context
def zero():
    try:
        count = treasury.zero_treasury(g.ledger)
        return jsonify({'success': True, 'message': 'تم تصفير الخزينة', 'accounts': count}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500


@accounts_bp.route('/accounts/<bank_name>/statement', methods=['GET'])
@with_ledger_context
def statement(bank_name):
    """كشف حساب مستخرج من المعاملات والمصروفات والتحويلات"""
    try:
        account = treasury.get_account(g.ledger, bank_name)
        entries = reports.account_statement(g.ledger, account.name)
        db.session.commit()
        return jsonify({
            'success': True,
            'account': account.to_dict(),
            'entries': entries,
            'count': len(entries)
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500
