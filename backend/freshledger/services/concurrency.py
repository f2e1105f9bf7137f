# Overview: Service-layer operations for concurrency; row locks, per-item serialization, retries.

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager, ExitStack
from typing import Iterable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_item_locks: dict[int, threading.RLock] = defaultdict(threading.RLock)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on databases that support it. SQLite drops the
    clause; stock_item_locks() serializes writers within one process there.
    """
    return query.with_for_update()


def _lock_for(stock_item_id: int) -> threading.RLock:
    with _registry_guard:
        return _item_locks[stock_item_id]


@contextmanager
def stock_item_locks(stock_item_ids: Iterable[int]):
    """
    Serialize ledger-mutating work per StockItem.

    Locks are taken in ascending id order so two workflows touching
    overlapping item sets cannot deadlock. They are re-entrant, so a workflow
    holding the locks may call ledger operations that take them again.
    """
    ids = sorted({int(i) for i in stock_item_ids if i is not None})
    with ExitStack() as stack:
        for item_id in ids:
            stack.enter_context(_lock_for(item_id))
        yield ids


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one workflow transaction, retrying it when the database reports a
    lock timeout or deadlock (OperationalError) or a version_id mismatch
    (StaleDataError). Any other exception rolls the session back and
    propagates unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrent update detected, retrying (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

