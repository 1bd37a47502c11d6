
from datetime import date

import pytest

from moaqeb import backup, change_feed, contacts, payroll, settlement, treasury
from moaqeb.conftest import tx_data
from moaqeb.errors import InsufficientFundsError
from moaqeb.transactions_service import complete_transaction, create_transaction


@pytest.fixture
def received(ctx):
    events = []
    unsubscribe = change_feed.subscribe(None, ctx.office_id, events.append)
    yield events
    unsubscribe()


def test_insert_is_delivered_after_commit(ctx, agent, received):
    treasury.get_balances(ctx)
    received.clear()
    tx = create_transaction(ctx, tx_data())

    tables = {(e['table'], e['event']) for e in received}
    assert ('transaction', 'INSERT') in tables
    assert ('bank_account', 'UPDATE') in tables
    assert {'table': 'transaction', 'office_id': ctx.office_id, 'event': 'INSERT', 'id': tx.id} in received


def test_table_subscription_filters_other_tables(ctx, agent):
    events = []
    unsubscribe = change_feed.subscribe('bank_account', ctx.office_id, events.append)
    try:
        create_transaction(ctx, tx_data())
    finally:
        unsubscribe()

    assert events
    assert all(e['table'] == 'bank_account' for e in events)


def test_other_offices_are_not_notified(ctx, guest, agent):
    guest_events = []
    unsubscribe = change_feed.subscribe(None, guest.feed_key, guest_events.append)
    try:
        create_transaction(ctx, tx_data())
    finally:
        unsubscribe()

    assert guest_events == []


def test_rolled_back_operation_publishes_nothing(ctx, agent, received):
    tx = create_transaction(ctx, tx_data())
    complete_transaction(ctx, tx.id)
    received.clear()

    with pytest.raises(InsufficientFundsError):
        settlement.settle_agent(ctx, agent.id, 'البلاد')

    assert received == []


def test_settlement_notifies_marked_transactions(ctx, agent, received):
    tx = create_transaction(ctx, tx_data())
    complete_transaction(ctx, tx.id)
    received.clear()

    settlement.settle_agent(ctx, agent.id, 'الراجحي')

    assert {'table': 'transaction', 'office_id': ctx.office_id, 'event': 'UPDATE', 'id': tx.id} in received
    assert any(e['table'] == 'agent_transfer' and e['event'] == 'INSERT' for e in received)


def test_unsubscribe_stops_delivery(ctx, agent):
    events = []
    unsubscribe = change_feed.subscribe('transaction', ctx.office_id, events.append)
    unsubscribe()

    create_transaction(ctx, tx_data())

    assert events == []
    assert change_feed.subscriber_count() == 0


def test_failing_subscriber_does_not_break_commit(ctx, agent):
    def broken(change):
        raise RuntimeError('boom')

    unsubscribe = change_feed.subscribe('transaction', ctx.office_id, broken)
    try:
        tx = create_transaction(ctx, tx_data())
    finally:
        unsubscribe()

    assert tx.id is not None


def test_restore_announces_deleted_rows(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    events = []
    unsubscribe = change_feed.subscribe('transaction', ctx.office_id, events.append)
    try:
        backup.restore_backup(ctx, {'transactions': []})
    finally:
        unsubscribe()

    assert events == [{'table': 'transaction', 'office_id': ctx.office_id, 'event': 'DELETE', 'id': tx.id}]


def test_agent_rename_announces_refreshed_transactions(ctx, agent, received):
    tx = create_transaction(ctx, tx_data())
    received.clear()

    contacts.update_agent(ctx, agent.id, {'name': 'أبو فهد الحربي'})

    assert {'table': 'transaction', 'office_id': ctx.office_id, 'event': 'UPDATE', 'id': tx.id} in received


def test_client_adoption_announces_linked_transactions(ctx, agent, received):
    tx = create_transaction(ctx, tx_data(client_name='سالم'))
    received.clear()

    contacts.create_client(ctx, 'سالم')

    assert {'table': 'transaction', 'office_id': ctx.office_id, 'event': 'UPDATE', 'id': tx.id} in received


def test_guest_changes_stay_on_the_device(guest):
    mine, others = [], []
    unsubscribers = [
        change_feed.subscribe('transaction', guest.feed_key, mine.append),
        change_feed.subscribe('transaction', 'guest:device-0002-bbbb', others.append),
    ]
    try:
        create_transaction(guest, tx_data(agent_name='إنجاز بنفسي'))
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    assert [e['event'] for e in mine] == ['INSERT']
    assert others == []


def test_archive_announces_released_agents(ctx, received):
    employee = payroll.create_employee(ctx, 'سعد', 'pass1234')
    agent = contacts.create_agent(ctx, 'معقب داخلي', employee_id=employee.id)
    payroll.save_salary_config(ctx, employee.id, {
        'salary_type': 'commission', 'rate': 5, 'start_date': '2026-03-01',
    })
    payroll.stop_employee(ctx, employee.id, today=date(2026, 3, 11))
    received.clear()

    payroll.archive_employee(ctx, employee.id)

    assert {'table': 'agent', 'office_id': ctx.office_id, 'event': 'UPDATE', 'id': agent.id} in received
