import pytest
from groupbuy.config import Settings
from groupbuy.inventory.product import Product
from groupbuy.lifecycle.service import OrderLifecycleService
from groupbuy.notification import FakeDispatcher
from groupbuy.tax import StaticRateTaxCalculator
from protean.integrations.pytest import DomainFixture
from protean.utils.globals import current_domain


@pytest.fixture(scope="session")
def groupbuy_bed():
    from groupbuy.domain import groupbuy

    bed = DomainFixture(groupbuy)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(groupbuy_bed):
    with groupbuy_bed.domain_context():
        yield

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()

        # Drain event stores
        current_domain.event_store.store._data_reset()


@pytest.fixture()
def settings():
    return Settings(environment="test", default_jurisdiction="CA", notification_adapter="fake")


@pytest.fixture()
def dispatcher():
    return FakeDispatcher()


@pytest.fixture()
def tax_calculator():
    return StaticRateTaxCalculator()


@pytest.fixture()
def service(tax_calculator, dispatcher, settings):
    return OrderLifecycleService(tax_calculator, dispatcher, settings=settings)


@pytest.fixture()
def make_product():
    """Factory that saves a product and returns it."""

    def _make(
        seller_id="seller-001",
        name="Bulk Jasmine Rice",
        unit_price=2.5,
        min_order_quantity=100,
        current_stock=500,
        **kwargs,
    ):
        product = Product.create(
            seller_id=seller_id,
            name=name,
            unit_price=unit_price,
            min_order_quantity=min_order_quantity,
            current_stock=current_stock,
            **kwargs,
        )
        current_domain.repository_for(Product).add(product)
        return product

    return _make


@pytest.fixture()
def rice(make_product):
    """Product P: minimum order 100, 500 in stock."""
    return make_product()


@pytest.fixture()
def address():
    return {
        "street": "1 Market St",
        "city": "San Francisco",
        "state": "CA",
        "postal_code": "94105",
        "country": "US",
    }
