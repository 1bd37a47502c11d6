import pytest

from moaqeb.app import create_app
from moaqeb.ledger_context import LedgerContext
from moaqeb.models import User, db


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


GUEST_DEVICE = 'device-0001-aaaa'


def device_client(app, device_id=GUEST_DEVICE):
    client = app.test_client()
    if device_id:
        client.environ_base['HTTP_X_DEVICE_ID'] = device_id
    return client


@pytest.fixture
def client(app):
    return device_client(app)


def make_user(phone, role='member', office_name='مكتب التعقيب', parent=None, expiry=None):
    user = User(
        office_name=office_name,
        phone=phone,
        role=role,
        parent_id=parent.id if parent else None,
        subscription_expiry=expiry,
    )
    user.set_password('secret123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def golden_user(app):
    return make_user('966500000001', role='golden', office_name='مكتب الإنجاز')


@pytest.fixture
def ctx(golden_user):
    return LedgerContext.for_user(golden_user)


@pytest.fixture
def guest(app):
    return LedgerContext.guest(GUEST_DEVICE)


@pytest.fixture
def agent(ctx):
    from moaqeb.contacts import create_agent
    return create_agent(ctx, 'أبو فهد', phone='0551234567')


def tx_data(**overrides):
    data = {
        'type': 'تجديد إقامة',
        'client_name': 'محمد',
        'agent_name': 'أبو فهد',
        'client_price': 500,
        'agent_price': 300,
        'payment_method': 'الراجحي',
        'duration': 3,
    }
    data.update(overrides)
    return data
