import pytest

from moaqeb import contacts
from moaqeb.conftest import tx_data
from moaqeb.errors import InvalidStateError, NotFoundError, ValidationError
from moaqeb.models import Agent, Client, Transaction, db
from moaqeb.transactions_service import (
    cancel_transaction,
    complete_transaction,
    create_transaction,
)


@pytest.mark.parametrize('raw, expected', [
    ('0551234567', '966551234567'),
    ('551234567', '966551234567'),
    ('+966 55 123 4567', '966551234567'),
    ('966551234567', '966551234567'),
    ('', None),
    (None, None),
])
def test_normalize_phone(raw, expected):
    assert contacts.normalize_phone(raw) == expected


@pytest.mark.parametrize('raw', ['0451234567', '05512345', '0551234567890'])
def test_normalize_phone_rejects_non_saudi_mobiles(raw):
    with pytest.raises(ValidationError):
        contacts.normalize_phone(raw)


def test_agent_names_are_unique_per_office(ctx, guest, agent):
    with pytest.raises(ValidationError):
        contacts.create_agent(ctx, '  أبو فهد ')
    with pytest.raises(ValidationError):
        contacts.create_agent(ctx, 'إنجاز بنفسي')

    # نفس الاسم مسموح في مكتب آخر
    other = contacts.create_agent(guest, 'أبو فهد')
    assert other.office_id is None
    assert ctx.query(Agent).count() == 1


def test_resolve_agent_by_name_and_self_handled(ctx, agent):
    assert contacts.resolve_agent(ctx, agent_name='أبو فهد') == (agent, 'أبو فهد')
    assert contacts.resolve_agent(ctx, agent_name='إنجاز بنفسي') == (None, 'إنجاز بنفسي')
    with pytest.raises(NotFoundError):
        contacts.resolve_agent(ctx, agent_name='غير مسجل')
    with pytest.raises(ValidationError):
        contacts.resolve_agent(ctx)


def test_resolve_client_defaults_to_general(ctx):
    assert contacts.resolve_client(ctx, client_name='') == (None, 'عميل عام')
    assert contacts.resolve_client(ctx, client_name='زائر') == (None, 'زائر')


def test_agent_cannot_be_linked_to_foreign_employee(ctx):
    with pytest.raises(NotFoundError):
        contacts.create_agent(ctx, 'معقب', employee_id=999)


def test_delete_agent_blocked_while_payable_outstanding(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    complete_transaction(ctx, tx.id)

    with pytest.raises(InvalidStateError):
        contacts.delete_agent(ctx, agent.id)
    assert db.session.get(Agent, agent.id) is not None


def test_delete_agent_unlinks_cancelled_transactions(ctx, agent):
    tx = create_transaction(ctx, tx_data())
    cancel_transaction(ctx, tx.id)

    contacts.delete_agent(ctx, agent.id)

    remaining = db.session.get(Transaction, tx.id)
    assert remaining.agent_id is None
    assert remaining.agent_name == 'أبو فهد'


def test_delete_client_blocked_while_refund_outstanding(ctx, agent):
    client = contacts.create_client(ctx, 'سالم')
    tx = create_transaction(ctx, tx_data(client_id=client.id))
    cancel_transaction(ctx, tx.id)

    with pytest.raises(InvalidStateError):
        contacts.delete_client(ctx, client.id)
    assert ctx.query(Client).count() == 1


def test_client_rename_refreshes_transaction_names(ctx, agent):
    client = contacts.create_client(ctx, 'سالم', phone='0509876543')
    tx = create_transaction(ctx, tx_data(client_id=client.id))

    contacts.update_client(ctx, client.id, {'name': 'سالم العتيبي'})

    assert db.session.get(Transaction, tx.id).client_name == 'سالم العتيبي'
    assert client.phone == '966509876543'
