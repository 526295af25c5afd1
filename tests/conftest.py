import pytest
import copy
import itertools
from decimal import Decimal
from types import SimpleNamespace

from config import TestingConfig
from qrorder import create_app
from qrorder.database import create_all, drop_all, get_session
from qrorder.models import Restaurant, DiningTable, MenuItem, MenuItemExtra
from qrorder.services import order_service


class FakeProcessor:
    """In-memory stand-in for MercadoPagoService (same method surface)."""

    def __init__(self):
        self.payments = {}
        self.preferences = []
        self.tokens = []
        self.get_calls = []
        self.search_calls = []
        self.fail_with = None
        self.on_get_payment = None
        self._pref_ids = itertools.count(1)

    def __call__(self, access_token):
        self.tokens.append(access_token)
        return self

    def add_payment(self, payment_id, order_id, status='approved', email='diner@example.com',
                    date_created='2024-01-01T12:00:00.000-03:00', payment_method_id='visa', **extra):
        payment = {
            'id': int(payment_id),
            'status': status,
            'external_reference': order_id,
            'payment_method_id': payment_method_id,
            'collection_id': int(payment_id),
            'date_created': date_created,
            'payer': {'email': email, 'first_name': 'Ana', 'last_name': 'García'} if email else {},
        }
        payment.update(extra)
        self.payments[str(payment_id)] = payment
        return payment

    def create_preference(self, preference_data):
        if self.fail_with:
            raise self.fail_with
        self.preferences.append(copy.deepcopy(preference_data))
        pref_id = f"pref-{next(self._pref_ids)}"
        return {
            'id': pref_id,
            'init_point': f"https://www.mercadopago.com.ar/checkout/v1/redirect?pref_id={pref_id}",
            'sandbox_init_point': f"https://sandbox.mercadopago.com.ar/checkout/v1/redirect?pref_id={pref_id}",
            'collector_id': 987654321,
        }

    def get_payment(self, payment_id):
        self.get_calls.append(str(payment_id))
        if self.on_get_payment:
            hook, self.on_get_payment = self.on_get_payment, None
            hook()
        if self.fail_with:
            raise self.fail_with
        payment = self.payments.get(str(payment_id))
        return copy.deepcopy(payment) if payment else None

    def search_payments_by_reference(self, external_reference):
        self.search_calls.append(external_reference)
        if self.fail_with:
            raise self.fail_with
        results = [copy.deepcopy(p) for p in self.payments.values()
                   if p.get('external_reference') == external_reference]
        return sorted(results, key=lambda p: p['date_created'], reverse=True)


class RecordingNotifier:
    """Captures confirmation payloads instead of sending email."""

    def __init__(self):
        self.sent = []

    def send_order_confirmation(self, payload):
        self.sent.append(payload)
        return True


@pytest.fixture(scope='function')
def app():
    """Create application instance for testing (fresh in-memory database)."""
    app = create_app(TestingConfig)
    app.extensions['processor_factory'] = FakeProcessor()
    app.extensions['order_notifier'] = RecordingNotifier()

    ctx = app.app_context()
    ctx.push()
    create_all(app)
    yield app
    get_session().remove()
    drop_all(app)
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def processor(app):
    return app.extensions['processor_factory']


@pytest.fixture(scope='function')
def notifier(app):
    return app.extensions['order_notifier']


@pytest.fixture(scope='function')
def restaurant(session):
    """Restaurant with Mercado Pago credentials (no opening hours = always open)."""
    restaurant = Restaurant(
        name='La Parrilla de Prueba',
        email='owner@parrilla.test',
        mercadopago_access_token='TEST-ACCESS-TOKEN',
        primary_color='#ff5722',
    )
    session.add(restaurant)
    session.commit()
    return restaurant


@pytest.fixture(scope='function')
def other_restaurant(session):
    restaurant = Restaurant(name='Otro Restaurante', mercadopago_access_token='OTHER-TOKEN')
    session.add(restaurant)
    session.commit()
    return restaurant


@pytest.fixture(scope='function')
def table(session, restaurant):
    table = DiningTable(restaurant_id=restaurant.id, table_number=7)
    session.add(table)
    session.commit()
    return table


@pytest.fixture(scope='function')
def menu(session, restaurant, other_restaurant):
    """Burger 1000 (+ cheese 200), soda 500, and an item from another restaurant."""
    burger = MenuItem(restaurant_id=restaurant.id, name='Hamburguesa', price=Decimal('1000.00'))
    soda = MenuItem(restaurant_id=restaurant.id, name='Gaseosa', price=Decimal('500.00'))
    foreign = MenuItem(restaurant_id=other_restaurant.id, name='Pizza ajena', price=Decimal('10.00'))
    session.add_all([burger, soda, foreign])
    session.flush()

    cheese = MenuItemExtra(menu_item_id=burger.id, name='Queso', price=Decimal('200.00'))
    soda_ice = MenuItemExtra(menu_item_id=soda.id, name='Hielo', price=Decimal('0.00'))
    session.add_all([cheese, soda_ice])
    session.commit()

    return SimpleNamespace(burger=burger, soda=soda, foreign=foreign, cheese=cheese, soda_ice=soda_ice)


@pytest.fixture(scope='function')
def make_order(session, restaurant, table, menu):
    """Factory: table order of 2 burgers with 1 cheese (2200.00) unless overridden."""
    def _make(**kwargs):
        params = {
            'restaurant_id': restaurant.id,
            'items': [{
                'menu_item_id': menu.burger.id,
                'quantity': 2,
                'extras': [{'extra_id': menu.cheese.id, 'quantity': 1}],
            }],
            'table_id': table.id,
            'client_session_id': 'session-a',
        }
        params.update(kwargs)
        if params.get('takeaway'):
            params['table_id'] = None
        return order_service.create_order(session, **params)
    return _make
