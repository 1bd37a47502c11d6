from datetime import datetime, timedelta

import pytest

from moaqeb import membership, treasury
from moaqeb.conftest import make_user, tx_data
from moaqeb.contacts import create_agent
from moaqeb.errors import LimitExceededError, PermissionDeniedError
from moaqeb.expenses_service import add_expense, delete_expense
from moaqeb.ledger_context import LedgerContext
from moaqeb.models import Transaction
from moaqeb.transactions_service import create_transaction

NOW = datetime(2026, 6, 1, 12, 0)


def test_effective_role_without_user_is_visitor():
    assert membership.effective_role(None, NOW) == 'visitor'


def test_expired_golden_is_demoted_to_member(app):
    expired = make_user('966500000002', role='golden', expiry=NOW - timedelta(days=1))
    active = make_user('966500000003', role='golden', expiry=NOW + timedelta(days=1))
    unlimited = make_user('966500000004', role='golden')

    assert membership.effective_role(expired, NOW) == 'member'
    assert membership.effective_role(active, NOW) == 'golden'
    assert membership.effective_role(unlimited, NOW) == 'golden'


def test_employee_follows_owner_subscription(app):
    owner = make_user('966500000005', role='golden', expiry=NOW + timedelta(days=10))
    employee = make_user('EMP-1-1', role='employee', parent=owner)

    assert membership.effective_role(employee, NOW) == 'employee'
    assert membership.effective_role(employee, NOW + timedelta(days=11)) == 'member'


def test_check_limit_uses_tier_ceilings():
    limits = {
        'visitor': {'transactions': 3, 'clients': 3, 'agents': 2, 'expenses': 5},
        'member': {'transactions': 20, 'clients': 10, 'agents': 5, 'expenses': 20},
        'golden': {'transactions': 100, 'clients': 100, 'agents': 100, 'expenses': 100},
    }
    assert membership.check_limit('visitor', 'transactions', 2, limits).allowed
    blocked = membership.check_limit('visitor', 'transactions', 3, limits)
    assert not blocked.allowed
    assert blocked.tier == 'visitor'
    # الموظف يستخدم حدود الذهبي
    assert membership.check_limit('employee', 'transactions', 50, limits).tier == 'golden'
    assert membership.check_limit('employee', 'transactions', 50, limits).allowed


def test_visitor_limit_blocks_fourth_transaction(guest):
    membership.update_settings(limits={'visitor': {'transactions': 3}})
    for _ in range(3):
        create_transaction(guest, tx_data(agent_name='إنجاز بنفسي', client_price=10))

    with pytest.raises(LimitExceededError) as exc_info:
        create_transaction(guest, tx_data(agent_name='إنجاز بنفسي', client_price=10))

    assert exc_info.value.tier == 'visitor'
    assert exc_info.value.to_dict()['upsell'] is True
    assert 'للزوار' in exc_info.value.message
    assert guest.query(Transaction).count() == 3
    assert treasury.get_balances(guest)['الراجحي'] == 30.0


def test_stored_limits_merge_over_defaults(app):
    membership.update_settings(limits={'visitor': {'transactions': 3}})
    limits = membership.get_settings().get_limits()
    assert limits['visitor'] == {'transactions': 3, 'clients': 3, 'agents': 2, 'expenses': 5}
    assert limits['golden']['agents'] == 10000


def test_member_agent_limit_shows_golden_upsell(app):
    member = make_user('966500000006', role='member')
    ctx = LedgerContext.for_user(member)
    for i in range(5):
        create_agent(ctx, f'معقب {i}')

    with pytest.raises(LimitExceededError) as exc_info:
        create_agent(ctx, 'معقب إضافي')
    assert exc_info.value.tier == 'member'
    assert 'الباقة الذهبية' in exc_info.value.message


def test_transfer_and_expense_deletion_need_feature_permission(app):
    member = make_user('966500000007', role='member')
    ctx = LedgerContext.for_user(member)
    create_transaction(ctx, tx_data(agent_name='إنجاز بنفسي', client_price=100))
    expense = add_expense(ctx, 'قرطاسية', 20, 'الراجحي')

    with pytest.raises(PermissionDeniedError):
        treasury.transfer_between_accounts(ctx, 'الراجحي', 'البلاد', 50)
    with pytest.raises(PermissionDeniedError):
        delete_expense(ctx, expense.id)
    assert treasury.get_balances(ctx)['الراجحي'] == 80.0


def test_extend_subscription_from_current_expiry(app):
    user = make_user('966500000008', role='member')
    membership.extend_subscription(user, 'شهر', now=NOW)
    assert user.role == 'golden'
    assert user.subscription_expiry == NOW + timedelta(days=30)

    membership.extend_subscription(user, 'سنة', now=NOW)
    assert user.subscription_expiry == NOW + timedelta(days=395)


def test_expired_golden_users_listing(app):
    expired = make_user('966500000010', role='golden', expiry=NOW - timedelta(days=1))
    make_user('966500000011', role='golden', expiry=NOW + timedelta(days=1))

    assert [u.id for u in membership.expired_golden_users(NOW)] == [expired.id]
