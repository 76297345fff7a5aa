"""
Pytest fixtures for stockledger backend tests.

Provides the in-memory database, placements, operators with their access
policies, catalog products and a test client.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Branch, OnlineShop, Product, User, Warehouse
from stockledger.services import stock_in_service
from stockledger.services.access_policy import AccessPolicy
from stockledger.services.placement_service import PlacementRef
from stockledger.services.stock_in_service import QuantityStockIn, SerializedStockIn
from stockledger.services.unit_registry import UnitSpec


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# PLACEMENTS
# =============================================================================


@pytest.fixture(scope='function')
def central(db_session):
    """Branch the central staff works at."""
    branch = Branch(name="Central Branch", code="BR-01")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def north(db_session):
    """Second branch, destination of most transfers."""
    branch = Branch(name="North Branch", code="BR-02")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def warehouse(db_session):
    warehouse = Warehouse(name="Main Warehouse", code="WH-01")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def shop(db_session):
    shop = OnlineShop(name="Marketplace Store", code="OS-01")
    db_session.add(shop)
    db_session.commit()
    return shop


# =============================================================================
# OPERATORS
# =============================================================================


def _make_user(db_session, username, role="staff", **placement):
    user = User(username=username, name=username.title(), role=role, **placement)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    """Unrestricted account with no placement of its own."""
    return _make_user(db_session, "owner", role="owner")


@pytest.fixture(scope='function')
def central_staff(db_session, central):
    return _make_user(db_session, "central", branch_id=central.id)


@pytest.fixture(scope='function')
def north_staff(db_session, north):
    return _make_user(db_session, "north", branch_id=north.id)


@pytest.fixture(scope='function')
def warehouse_staff(db_session, warehouse):
    return _make_user(db_session, "gudang", warehouse_id=warehouse.id)


def policy_for(app, user) -> AccessPolicy:
    """Build the policy the request decorator would build for this user."""
    return AccessPolicy.for_user(user, app.config["UNRESTRICTED_ROLES"])


@pytest.fixture(scope='function')
def owner_policy(app, owner):
    return policy_for(app, owner)


@pytest.fixture(scope='function')
def central_policy(app, central_staff):
    return policy_for(app, central_staff)


@pytest.fixture(scope='function')
def north_policy(app, north_staff):
    return policy_for(app, north_staff)


@pytest.fixture(scope='function')
def warehouse_policy(app, warehouse_staff):
    return policy_for(app, warehouse_staff)


def headers_for(user) -> dict:
    """Principal header the identity layer forwards."""
    return {'X-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def owner_headers(owner):
    return headers_for(owner)


@pytest.fixture(scope='function')
def central_headers(central_staff):
    return headers_for(central_staff)


@pytest.fixture(scope='function')
def north_headers(north_staff):
    return headers_for(north_staff)


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def phone(db_session):
    """Serialized product."""
    product = Product(sku="PH-A15", name="Galaxy A15 8/256", brand="Samsung", tracks_serial=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cable(db_session):
    """Quantity-tracked product."""
    product = Product(sku="AC-CBL-C", name="USB-C Cable 1m", brand="Generic", tracks_serial=False)
    db_session.add(product)
    db_session.commit()
    return product


# =============================================================================
# STOCK HELPERS
# =============================================================================


@pytest.fixture(scope='function')
def receive_units(db_session):
    """
    Stock serials in through the real stock-in path and return the Unit rows
    in serial order.
    """
    from stockledger.models import Unit

    def _receive(policy, product, placement, serials, distributor="PT Sumber Makmur", selling_price="2500000.00"):
        specs = tuple(
            UnitSpec.from_dict({"serial": s, "selling_price": selling_price, "cost_price": "2000000.00"})
            for s in serials
        )
        stock_in_service.stock_in(
            product_id=product.id,
            placement=placement,
            items=SerializedStockIn(specs),
            policy=policy,
            new_distributor_name=distributor,
        )
        return (
            db_session.query(Unit)
            .filter(Unit.serial.in_(list(serials)), Unit.status != "deleted")
            .order_by(Unit.serial)
            .all()
        )

    return _receive


@pytest.fixture(scope='function')
def receive_quantity(db_session):
    def _receive(policy, product, placement, quantity, distributor="PT Kabel Jaya"):
        return stock_in_service.stock_in(
            product_id=product.id,
            placement=placement,
            items=QuantityStockIn(quantity),
            policy=policy,
            new_distributor_name=distributor,
        )

    return _receive


@pytest.fixture(scope='function')
def central_ref(central):
    return PlacementRef.branch(central.id)


@pytest.fixture(scope='function')
def north_ref(north):
    return PlacementRef.branch(north.id)


@pytest.fixture(scope='function')
def warehouse_ref(warehouse):
    return PlacementRef.warehouse(warehouse.id)
