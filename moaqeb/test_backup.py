import pytest

from moaqeb import backup, payroll, settlement, treasury
from moaqeb.conftest import tx_data
from moaqeb.contacts import create_agent, create_client
from moaqeb.errors import ValidationError
from moaqeb.expenses_service import add_expense
from moaqeb.models import Agent, AgentTransfer, SalaryConfig, Transaction
from moaqeb.transactions_service import cancel_transaction, complete_transaction, create_transaction


def _populate(ctx, agent):
    client = create_client(ctx, 'سالم')
    done = create_transaction(ctx, tx_data(client_id=client.id))
    complete_transaction(ctx, done.id)
    settlement.settle_agent(ctx, agent.id, 'الراجحي')
    cancelled = create_transaction(ctx, tx_data(client_id=client.id, client_price=200, payment_method='البلاد'))
    cancel_transaction(ctx, cancelled.id)
    add_expense(ctx, 'إيجار', 50, 'الراجحي')
    return client


def test_export_contains_every_collection(ctx, agent):
    _populate(ctx, agent)

    document = backup.export_backup(ctx)

    assert set(document) == set(backup.BACKUP_KEYS)
    assert len(document['transactions']) == 2
    assert document['balances']['الراجحي'] == 150.0
    assert document['pendingBalances']['البلاد'] == 200.0
    assert len(document['agentTransfers']) == 1
    assert document['agents'][0]['name'] == 'أبو فهد'


def test_restore_overwrites_and_remaps_links(ctx, agent):
    _populate(ctx, agent)
    document = backup.export_backup(ctx)

    # بيانات بعد النسخة تُستبدل بالكامل
    create_agent(ctx, 'معقب جديد')
    create_transaction(ctx, tx_data(client_price=999))

    counts = backup.restore_backup(ctx, document)

    assert counts['transactions'] == 2
    assert ctx.query(Transaction).count() == 2
    assert [a.name for a in ctx.query(Agent).all()] == ['أبو فهد']
    balances = treasury.get_balances(ctx)
    assert balances['الراجحي'] == 150.0
    assert treasury.get_pending_balances(ctx)['البلاد'] == 200.0

    restored_agent = ctx.query(Agent).one()
    paid = ctx.query(Transaction).filter_by(status='completed').one()
    assert paid.agent_id == restored_agent.id
    assert paid.agent_paid is True
    assert ctx.query(AgentTransfer).one().agent_id == restored_agent.id

    refund_client = ctx.query(Transaction).filter_by(status='cancelled').one().client_id
    assert settlement.client_refund_due(ctx, refund_client)['due'] == 200.0


def test_restore_keeps_salary_configs_for_office_employees(ctx, agent):
    employee = payroll.create_employee(ctx, 'سعد', 'pass1234')
    payroll.save_salary_config(ctx, employee.id, {
        'salary_type': 'monthly', 'amount': 2500, 'start_date': '2026-01-05',
    })
    document = backup.export_backup(ctx)
    document['salaryConfigs']['99999'] = dict(document['salaryConfigs'][str(employee.id)], employee_id=99999)

    backup.restore_backup(ctx, document)

    configs = SalaryConfig.query.all()
    assert [c.employee_id for c in configs] == [employee.id]
    assert configs[0].amount == 2500.0
    assert configs[0].is_locked is True


def test_invalid_document_is_rejected_without_changes(ctx, agent):
    create_transaction(ctx, tx_data())

    with pytest.raises(ValidationError):
        backup.restore_backup(ctx, {'transactions': 'not-a-list'})
    with pytest.raises(ValidationError):
        backup.restore_backup(ctx, {'transactions': [{'type': 'ناقص'}]})

    assert ctx.query(Transaction).count() == 1
    assert treasury.get_balances(ctx)['الراجحي'] == 500.0
