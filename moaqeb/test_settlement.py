import pytest
from sqlalchemy import update

from moaqeb import settlement, treasury
from moaqeb.conftest import tx_data
from moaqeb.contacts import create_client
from moaqeb.errors import ConcurrentUpdateError, InsufficientFundsError, ValidationError
from moaqeb.models import AgentTransfer, ClientRefund, Transaction, db
from moaqeb.transactions_service import cancel_transaction, complete_transaction, create_transaction


def test_agent_settlement_end_to_end(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    assert treasury.get_balances(ctx)['الراجحي'] == 500.0

    complete_transaction(ctx, tx.id)
    transfer = settlement.settle_agent(ctx, agent.id, 'الراجحي')

    assert treasury.get_balances(ctx)['الراجحي'] == 200.0
    assert treasury.get_pending_balances(ctx)['الراجحي'] == 0.0
    assert db.session.get(Transaction, tx.id).agent_paid is True
    assert AgentTransfer.query.count() == 1
    assert transfer.amount == 300.0
    assert transfer.transaction_count == 1
    assert transfer.agent_name == agent.name


def test_agent_settlement_is_exclusive(ctx, agent):
    for price in (100, 150):
        tx = create_transaction(ctx, tx_data(agent_price=price))
        complete_transaction(ctx, tx.id)
    # معاملة نشطة لا تدخل في المستحقات
    create_transaction(ctx, tx_data(agent_price=70))

    assert settlement.agent_payable(ctx, agent.id)['due'] == 250.0
    settlement.settle_agent(ctx, agent.id, 'الراجحي')

    completed = Transaction.query.filter_by(agent_id=agent.id, status='completed').all()
    assert all(t.agent_paid for t in completed)
    assert settlement.agent_payable(ctx, agent.id)['due'] == 0.0
    assert settlement.list_agent_payables(ctx) == []

    with pytest.raises(ValidationError):
        settlement.settle_agent(ctx, agent.id, 'الراجحي')
    assert AgentTransfer.query.count() == 1


def test_agent_settlement_refuses_when_bank_cannot_cover(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    complete_transaction(ctx, tx.id)

    with pytest.raises(InsufficientFundsError):
        settlement.settle_agent(ctx, agent.id, 'البلاد')

    assert db.session.get(Transaction, tx.id).agent_paid is False
    assert AgentTransfer.query.count() == 0
    balances = treasury.get_balances(ctx)
    assert balances['الراجحي'] == 500.0
    assert balances['البلاد'] == 0.0
    assert treasury.get_pending_balances(ctx)['الراجحي'] == 300.0


def test_agent_settlement_pending_pool_floors_at_zero(ctx, agent):
    # الإنجاز على بنك والتسوية من بنك آخر لا رصيد معلق فيه
    tx = create_transaction(ctx, tx_data(payment_method='الأهلي'))
    create_transaction(ctx, tx_data(agent_name='إنجاز بنفسي', client_price=1000))
    complete_transaction(ctx, tx.id)

    settlement.settle_agent(ctx, agent.id, 'الراجحي')

    assert treasury.get_balances(ctx)['الراجحي'] == 700.0
    assert treasury.get_pending_balances(ctx)['الراجحي'] == 0.0
    assert treasury.get_pending_balances(ctx)['الأهلي'] == 300.0


def test_concurrent_marking_rolls_back_the_whole_settlement(ctx, agent, monkeypatch):
    tx_id = create_transaction(ctx, tx_data()).id
    complete_transaction(ctx, tx_id)

    original = treasury.apply_delta

    def racing_apply_delta(account, *args, **kwargs):
        # عملية أخرى تعلم المعاملة كمسددة بعد قراءة المستحقات
        db.session.execute(update(Transaction).where(Transaction.id == tx_id).values(agent_paid=True))
        return original(account, *args, **kwargs)

    monkeypatch.setattr(treasury, 'apply_delta', racing_apply_delta)

    with pytest.raises(ConcurrentUpdateError):
        settlement.settle_agent(ctx, agent.id, 'الراجحي')

    monkeypatch.undo()
    assert db.session.get(Transaction, tx_id).agent_paid is False
    assert treasury.get_balances(ctx)['الراجحي'] == 500.0
    assert AgentTransfer.query.count() == 0


def test_client_refund_end_to_end(ctx, agent):
    client = create_client(ctx, 'سالم', phone='555555555')
    tx = create_transaction(ctx, tx_data(client_id=client.id, client_price=200, payment_method='البلاد'))
    cancel_transaction(ctx, tx.id)
    assert treasury.get_pending_balances(ctx)['البلاد'] == 200.0

    refund = settlement.settle_client_refund(ctx, client.id, 'البلاد')

    assert treasury.get_pending_balances(ctx)['البلاد'] == 0.0
    # الاسترجاع من الرصيد المعلق فقط
    assert treasury.get_balances(ctx)['البلاد'] == 200.0
    assert db.session.get(Transaction, tx.id).client_refunded is True
    assert refund.amount == 200.0
    assert ClientRefund.query.count() == 1


def test_client_refund_is_exclusive(ctx, agent):
    client = create_client(ctx, 'سالم')
    for price in (120, 80):
        tx = create_transaction(ctx, tx_data(client_id=client.id, client_price=price))
        cancel_transaction(ctx, tx.id)

    assert settlement.client_refund_due(ctx, client.id)['due'] == 200.0
    settlement.settle_client_refund(ctx, client.id, 'الراجحي')

    assert settlement.client_refund_due(ctx, client.id)['due'] == 0.0
    with pytest.raises(ValidationError):
        settlement.settle_client_refund(ctx, client.id, 'الراجحي')


def test_client_refund_requires_pending_pool(ctx, agent):
    client = create_client(ctx, 'سالم')
    tx = create_transaction(ctx, tx_data(client_id=client.id, client_price=200, payment_method='البلاد'))
    cancel_transaction(ctx, tx.id)

    # الراجحي لديه رصيد فعلي لكن لا رصيد معلق
    create_transaction(ctx, tx_data(client_price=5000))
    with pytest.raises(InsufficientFundsError):
        settlement.settle_client_refund(ctx, client.id, 'الراجحي')

    assert db.session.get(Transaction, tx.id).client_refunded is False
    assert ClientRefund.query.count() == 0
    assert treasury.get_balances(ctx)['الراجحي'] == 5000.0


def test_client_created_later_adopts_matching_transactions(ctx, agent):
    tx = create_transaction(ctx, tx_data(client_name='ناصر', client_price=90))
    cancel_transaction(ctx, tx.id)

    client = create_client(ctx, 'ناصر')

    assert settlement.client_refund_due(ctx, client.id)['due'] == 90.0


def test_settlement_from_another_bank_leaves_original_earmark(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    complete_transaction(ctx, tx.id)
    create_transaction(ctx, tx_data(agent_name='إنجاز بنفسي', client_price=1000, payment_method='البلاد'))

    settlement.settle_agent(ctx, agent.id, 'البلاد')

    balances = treasury.get_balances(ctx)
    pending = treasury.get_pending_balances(ctx)
    assert balances['البلاد'] == 700.0
    assert balances['الراجحي'] == 500.0
    # المعلق يُخفض في بنك التسوية فقط بحد أدنى صفر
    assert pending['البلاد'] == 0.0
    assert pending['الراجحي'] == 300.0
    assert settlement.agent_payable(ctx, agent.id)['due'] == 0.0
