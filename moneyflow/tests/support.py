from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from moneyflow import ledger_service
from moneyflow.db import init_db


def memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


def seed_user(engine, email="owner@example.com"):
    return ledger_service.create_user(engine, email, name="Owner", home_currency="USD")["id"]


def seed_account(engine, user_id, balance="1000", name="Checking", **extra):
    return ledger_service.create_account(
        engine, user_id, name=name, type="checking", balance=Decimal(balance), **extra
    )["id"]


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def notify(self, user_id, event, payload) -> None:
        self.events.append((user_id, event, payload))

    def names(self):
        return [event for _, event, _ in self.events]


class FailingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, user_id, event, payload) -> None:
        self.calls += 1
        raise RuntimeError("push channel down")


class StaticGenerator:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts = []

    def generate(self, prompt: str, context: str) -> str:
        self.prompts.append((prompt, context))
        return self.reply


class BrokenGenerator:
    def generate(self, prompt: str, context: str) -> str:
        raise ConnectionError("provider unreachable")
