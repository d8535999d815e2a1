from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, TypeVar

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from utils.errors import AggregationError, NotFoundError

M = TypeVar("M")


def get_or_404(model: type[M], ident, label: str | None = None) -> M:
    """Fetch ``model`` by primary key or raise ``NotFoundError``."""
    try:
        key = int(ident)
    except (TypeError, ValueError):
        raise NotFoundError(f"{label or model.__name__} not found")
    obj = db.session.get(model, key)
    if obj is None:
        raise NotFoundError(f"{label or model.__name__} not found")
    return obj


@contextmanager
def aggregation_guard(what: str) -> Iterator[None]:
    """Turn store failures while computing ``what`` into ``AggregationError``.

    Nothing computed inside the block is returned on failure.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Store failure while computing %s", what)
        raise AggregationError(f"Failed to compute {what}") from exc


def commit() -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
