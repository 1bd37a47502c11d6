from flask import Blueprint, g, jsonify, request

from moaqeb import reports
from moaqeb.auth_decorators import with_ledger_context
from moaqeb.membership import can_access_feature

reports_bp = Blueprint('reports', __name__)


@reports_bp.route('/reports/stats', methods=['GET'])
@with_ledger_context
def get_stats():
    """Transaction counts and profit for today, this week and this month."""
    stats = reports.transaction_stats(g.ledger)
    if not can_access_feature(g.ledger.role, 'monthStats'):
        for key in ('month_count', 'month_profit', 'month_value'):
            stats.pop(key, None)
    return jsonify({'success': True, 'stats': stats}), 200


@reports_bp.route('/reports/achievers', methods=['GET'])
@with_ledger_context
def get_achievers():
    limit = request.args.get('limit', type=int)
    result = reports.achievers(g.ledger, limit=limit)
    if not can_access_feature(g.ledger.role, 'achieversNumbers'):
        for entry in result:
            entry.pop('total', None)
    return jsonify({'success': True, 'achievers': result}), 200
