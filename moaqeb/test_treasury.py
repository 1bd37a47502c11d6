import pytest

from moaqeb import treasury
from moaqeb.conftest import tx_data
from moaqeb.errors import InsufficientFundsError, ValidationError
from moaqeb.expenses_service import add_expense, delete_expense, list_expenses
from moaqeb.models import BankAccount


@pytest.fixture
def funded(ctx):
    from moaqeb.transactions_service import create_transaction
    create_transaction(ctx, tx_data(agent_name='إنجاز بنفسي', client_price=1000))
    return ctx


def test_accounts_are_created_for_configured_banks(ctx):
    balances = treasury.get_balances(ctx)

    assert len(balances) == 10
    assert set(balances.values()) == {0.0}
    assert ctx.query(BankAccount).count() == 10


def test_unknown_bank_is_rejected(ctx):
    with pytest.raises(ValidationError):
        treasury.get_account(ctx, 'بنك غير معروف')
    with pytest.raises(ValidationError):
        treasury.get_account(ctx, '  ')


def test_transfer_moves_balance(funded):
    treasury.transfer_between_accounts(funded, 'الراجحي', 'البلاد', 400)

    balances = treasury.get_balances(funded)
    assert balances['الراجحي'] == 600.0
    assert balances['البلاد'] == 400.0
    assert treasury.treasury_total(funded) == 1000.0


def test_transfer_refused_when_source_is_short(funded):
    with pytest.raises(InsufficientFundsError):
        treasury.transfer_between_accounts(funded, 'الراجحي', 'البلاد', 1500)

    balances = treasury.get_balances(funded)
    assert balances['الراجحي'] == 1000.0
    assert balances['البلاد'] == 0.0


def test_transfer_to_same_account_is_rejected(funded):
    with pytest.raises(ValidationError):
        treasury.transfer_between_accounts(funded, 'الراجحي', 'الراجحي', 10)


def test_zero_treasury_clears_both_pools(funded):
    account = treasury.get_account(funded, 'الراجحي')
    treasury.apply_delta(account, pending_delta=250)

    treasury.zero_treasury(funded)

    assert set(treasury.get_balances(funded).values()) == {0.0}
    assert set(treasury.get_pending_balances(funded).values()) == {0.0}


def test_expense_debits_and_deletion_refunds(funded):
    expense = add_expense(funded, 'إيجار المكتب', 300, 'الراجحي')
    assert treasury.get_balances(funded)['الراجحي'] == 700.0
    assert [e.id for e in list_expenses(funded)] == [expense.id]

    delete_expense(funded, expense.id)

    assert treasury.get_balances(funded)['الراجحي'] == 1000.0
    assert list_expenses(funded) == []


def test_expense_refused_when_bank_is_short(funded):
    with pytest.raises(InsufficientFundsError):
        add_expense(funded, 'إيجار المكتب', 300, 'البلاد')

    assert list_expenses(funded) == []
    assert treasury.get_balances(funded)['البلاد'] == 0.0


def test_expense_requires_positive_amount(funded):
    with pytest.raises(ValidationError):
        add_expense(funded, 'قرطاسية', 0, 'الراجحي')
    with pytest.raises(ValidationError):
        add_expense(funded, '', 10, 'الراجحي')


def test_transfer_locks_accounts_in_id_order(funded, monkeypatch):
    locked = []
    original = treasury._lock_account

    def tracking_lock(account):
        locked.append(account.id)
        return original(account)

    monkeypatch.setattr(treasury, '_lock_account', tracking_lock)
    treasury.transfer_between_accounts(funded, 'الراجحي', 'البلاد', 100)
    treasury.transfer_between_accounts(funded, 'البلاد', 'الراجحي', 50)

    rajhi = treasury.get_account(funded, 'الراجحي').id
    bilad = treasury.get_account(funded, 'البلاد').id
    ordered = sorted((rajhi, bilad))
    assert locked == ordered + ordered
    assert treasury.get_balances(funded)['البلاد'] == 50.0
