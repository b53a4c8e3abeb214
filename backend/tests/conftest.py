import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "dev"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["SOLAPI_API_KEY"] = ""
os.environ["SOLAPI_API_SECRET"] = ""
os.environ["SOLAPI_SENDER_KEY"] = ""

import pytest

from app.database import create_db_and_tables, drop_db_and_tables
from app.main import _login_limiter


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test an empty in-memory database and a fresh login limiter."""
    drop_db_and_tables()
    create_db_and_tables()
    _login_limiter.clear()
    yield


class RecordingNotifier:
    """Stands in for the Kakao notifier and remembers what would be sent."""

    def __init__(self):
        self.sent = []

    def new_message(self, phone, name):
        self.sent.append(("NEW_MESSAGE", phone, name))

    def purchase(self, phone, name, order_number, product, price):
        self.sent.append(("PURCHASE", phone, name, order_number, product, price))

    def ticket(self, phone, name, order_number, product):
        self.sent.append(("TICKET", phone, name, order_number, product))


@pytest.fixture
def kakao(monkeypatch):
    notifier = RecordingNotifier()
    monkeypatch.setattr("app.services.make_notifier", lambda session: notifier)
    return notifier
