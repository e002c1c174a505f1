import pytest
from flask import g
from flask.testing import FlaskClient

from evidence_orders import create_app
from evidence_orders.config import TestConfig
from evidence_orders.extensions import db
from evidence_orders.services.clock import FrozenClock
from tests.helpers import START


class ActorClient(FlaskClient):
    """Test client that resolves the actor headers on every request.

    Requests share the fixture's app context, and with it ``g``, where
    Flask-Login caches the loaded user.
    """

    def open(self, *args, **kwargs):
        g.pop('_login_user', None)
        return super().open(*args, **kwargs)


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    app.test_client_class = ActorClient
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
