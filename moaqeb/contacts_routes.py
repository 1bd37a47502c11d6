"""
Routes للمعقبين والعملاء وتسوية مستحقاتهم
==========================================

Endpoints:
- GET/POST        /api/agents
- PUT/DELETE      /api/agents/<id>
- GET             /api/agents/payables          - ملخص مستحقات المعقبين
- GET             /api/agents/<id>/payable      - تفاصيل مستحقات معقب
- POST            /api/agents/<id>/settle       - تسوية مستحقات معقب {bank}
- GET             /api/agent-transfers
- GET/POST        /api/clients
- PUT/DELETE      /api/clients/<id>
- GET             /api/clients/refunds-due      - ملخص مرتجعات العملاء
- GET             /api/clients/<id>/refund-due
- POST            /api/clients/<id>/refund      - استرجاع مبالغ عميل {bank}
- GET             /api/client-refunds
"""

from flask import Blueprint, g, jsonify, request

from moaqeb import contacts, settlement
from moaqeb.auth_decorators import with_ledger_context
from moaqeb.errors import LedgerError, error_response
from moaqeb.models import db

contacts_bp = Blueprint('contacts', __name__)


def _server_error(e):
    db.session.rollback()
    return jsonify({'success': False, 'message': str(e)}), 500


# ==========================================
# المعقبين
# ==========================================

@contacts_bp.route('/agents', methods=['GET'])
@with_ledger_context
def get_agents():
    agents = contacts.list_agents(g.ledger)
    return jsonify({
        'success': True,
        'agents': [a.to_dict() for a in agents],
        'count': len(agents)
    }), 200


@contacts_bp.route('/agents', methods=['POST'])
@with_ledger_context
def create_agent():
    try:
        data = request.get_json() or {}
        agent = contacts.create_agent(
            g.ledger,
            data.get('name'),
            phone=data.get('phone'),
            whatsapp=data.get('whatsapp'),
            employee_id=data.get('employee_id'),
        )
        return jsonify({'success': True, 'message': 'تم إضافة المعقب', 'agent': agent.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/agents/<int:agent_id>', methods=['PUT'])
@with_ledger_context
def update_agent(agent_id):
    try:
        agent = contacts.update_agent(g.ledger, agent_id, request.get_json() or {})
        return jsonify({'success': True, 'message': 'تم تحديث بيانات المعقب', 'agent': agent.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/agents/<int:agent_id>', methods=['DELETE'])
@with_ledger_context
def delete_agent(agent_id):
    try:
        contacts.delete_agent(g.ledger, agent_id)
        return jsonify({'success': True, 'message': 'تم حذف المعقب'}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/agents/payables', methods=['GET'])
@with_ledger_context
def get_agent_payables():
    payables = settlement.list_agent_payables(g.ledger)
    return jsonify({
        'success': True,
        'payables': payables,
        'total': round(sum(p['due'] for p in payables), 2)
    }), 200


@contacts_bp.route('/agents/<int:agent_id>/payable', methods=['GET'])
@with_ledger_context
def get_agent_payable(agent_id):
    try:
        return jsonify({'success': True, **settlement.agent_payable(g.ledger, agent_id)}), 200
    except LedgerError as e:
        return error_response(e)


@contacts_bp.route('/agents/<int:agent_id>/settle', methods=['POST'])
@with_ledger_context
def settle_agent(agent_id):
    """تسوية كامل مستحقات المعقب"""
    try:
        data = request.get_json() or {}
        transfer = settlement.settle_agent(g.ledger, agent_id, data.get('bank'))
        return jsonify({
            'success': True,
            'message': 'تمت تسوية مستحقات المعقب بنجاح',
            'transfer': transfer.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/agent-transfers', methods=['GET'])
@with_ledger_context
def get_agent_transfers():
    agent_id = request.args.get('agent_id', type=int)
    transfers = settlement.list_agent_transfers(g.ledger, agent_id)
    return jsonify({'success': True, 'transfers': [t.to_dict() for t in transfers]}), 200


# ==========================================
# العملاء
# ==========================================

@contacts_bp.route('/clients', methods=['GET'])
@with_ledger_context
def get_clients():
    clients = contacts.list_clients(g.ledger)
    return jsonify({
        'success': True,
        'clients': [c.to_dict() for c in clients],
        'count': len(clients)
    }), 200


@contacts_bp.route('/clients', methods=['POST'])
@with_ledger_context
def create_client():
    try:
        data = request.get_json() or {}
        client = contacts.create_client(
            g.ledger,
            data.get('name'),
            phone=data.get('phone'),
            whatsapp=data.get('whatsapp'),
        )
        return jsonify({'success': True, 'message': 'تم إضافة العميل', 'client': client.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/clients/<int:client_id>', methods=['PUT'])
@with_ledger_context
def update_client(client_id):
    try:
        client = contacts.update_client(g.ledger, client_id, request.get_json() or {})
        return jsonify({'success': True, 'message': 'تم تحديث بيانات العميل', 'client': client.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/clients/<int:client_id>', methods=['DELETE'])
@with_ledger_context
def delete_client(client_id):
    try:
        contacts.delete_client(g.ledger, client_id)
        return jsonify({'success': True, 'message': 'تم حذف العميل'}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/clients/refunds-due', methods=['GET'])
@with_ledger_context
def get_refunds_due():
    refunds = settlement.list_client_refunds_due(g.ledger)
    return jsonify({
        'success': True,
        'refunds': refunds,
        'total': round(sum(r['due'] for r in refunds), 2)
    }), 200


@contacts_bp.route('/clients/<int:client_id>/refund-due', methods=['GET'])
@with_ledger_context
def get_client_refund_due(client_id):
    try:
        return jsonify({'success': True, **settlement.client_refund_due(g.ledger, client_id)}), 200
    except LedgerError as e:
        return error_response(e)


@contacts_bp.route('/clients/<int:client_id>/refund', methods=['POST'])
@with_ledger_context
def refund_client(client_id):
    """استرجاع مبالغ المعاملات الملغاة من الرصيد المعلق"""
    try:
        data = request.get_json() or {}
        refund = settlement.settle_client_refund(g.ledger, client_id, data.get('bank'))
        return jsonify({
            'success': True,
            'message': 'تم استرجاع المبلغ للعميل بنجاح',
            'refund': refund.to_dict()
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception as e:
        return _server_error(e)


@contacts_bp.route('/client-refunds', methods=['GET'])
@with_ledger_context
def get_client_refunds():
    client_id = request.args.get('client_id', type=int)
    refunds = settlement.list_client_refunds(g.ledger, client_id)
    return jsonify({'success': True, 'refunds': [r.to_dict() for r in refunds]}), 200
