from datetime import datetime

from moaqeb import reports, settlement
from moaqeb.conftest import tx_data
from moaqeb.contacts import create_agent
from moaqeb.expenses_service import add_expense
from moaqeb.transactions_service import (
    cancel_transaction,
    complete_transaction,
    create_transaction,
)

# الأربعاء
NOW = datetime(2026, 6, 17, 15, 0)


def test_stats_split_by_day_week_and_month(ctx, agent):
    create_transaction(ctx, tx_data(), now=datetime(2026, 6, 17, 9, 0))
    # الأحد بداية الأسبوع
    create_transaction(ctx, tx_data(client_price=200, agent_price=50), now=datetime(2026, 6, 14, 0, 30))
    # السبت من الأسبوع السابق
    create_transaction(ctx, tx_data(client_price=100, agent_price=0), now=datetime(2026, 6, 13, 23, 0))
    create_transaction(ctx, tx_data(client_price=900, agent_price=100), now=datetime(2026, 5, 30, 12, 0))

    stats = reports.transaction_stats(ctx, now=NOW)

    assert (stats['today_count'], stats['today_profit']) == (1, 200.0)
    assert (stats['week_count'], stats['week_profit']) == (2, 350.0)
    assert (stats['month_count'], stats['month_profit']) == (3, 450.0)
    assert stats['month_value'] == 800.0
    assert stats['active_count'] == 4
    assert stats['total_value'] == 1700.0


def test_stats_count_statuses(ctx, agent):
    done = create_transaction(ctx, tx_data(), now=NOW)
    cancelled = create_transaction(ctx, tx_data(), now=NOW)
    complete_transaction(ctx, done.id)
    cancel_transaction(ctx, cancelled.id)

    stats = reports.transaction_stats(ctx, now=NOW)

    assert stats['completed_count'] == 1
    assert stats['cancelled_count'] == 1
    assert stats['active_count'] == 0


def test_achievers_ranked_by_completed_value(ctx, agent):
    create_agent(ctx, 'أبو سعد')
    for name, price in (('أبو فهد', 300), ('أبو سعد', 700), ('أبو فهد', 200), ('إنجاز بنفسي', 100)):
        tx = create_transaction(ctx, tx_data(agent_name=name, client_price=price, agent_price=0))
        complete_transaction(ctx, tx.id)
    create_transaction(ctx, tx_data(agent_name='أبو فهد', client_price=5000))

    result = reports.achievers(ctx)

    assert [(e['name'], e['count'], e['total']) for e in result] == [
        ('أبو سعد', 1, 700.0),
        ('أبو فهد', 2, 500.0),
        ('إنجاز بنفسي', 1, 100.0),
    ]
    assert result[2]['self_handled'] is True
    assert len(reports.achievers(ctx, limit=1)) == 1


def test_account_statement_lists_movements_in_date_order(ctx, agent):
    tx = create_transaction(ctx, tx_data(), now=datetime(2026, 6, 1, 9, 0))
    complete_transaction(ctx, tx.id)
    add_expense(ctx, 'كهرباء', 40, 'الراجحي', now=datetime(2026, 6, 2, 9, 0))
    settlement.settle_agent(ctx, agent.id, 'الراجحي', now=datetime(2026, 6, 3, 9, 0))

    entries = reports.account_statement(ctx, 'الراجحي')

    assert [(e['type'], e['amount']) for e in entries] == [
        ('transaction', 500.0),
        ('expense', -40.0),
        ('agent_transfer', -300.0),
    ]
    assert entries[0]['date'] == '2026-06-01T09:00:00'
    assert reports.account_statement(ctx, 'البلاد') == []
