import json
import logging

from app import create_app
from config import TestConfig


def test_logger_handlers_are_not_duplicated(app):
    second = create_app(TestConfig)
    third = create_app(TestConfig)

    assert second.logger is app.logger is third.logger
    consoles = [h for h in app.logger.handlers if type(h) is logging.StreamHandler]
    assert len(consoles) == 1


def test_json_keeps_insertion_order(client):
    response = client.get("/healthz")
    assert list(json.loads(response.data)) == ["success", "status"]
