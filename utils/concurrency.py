"""Serialized complaint writes on top of optimistic row versions."""
from typing import Callable, Optional, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from utils.errors import ConcurrentUpdate
from utils.notifications import NotificationOutbox

T = TypeVar("T")


def run_serialized(
    operation: Callable[[NotificationOutbox], T],
    attempts: Optional[int] = None,
    label: str = "complaint write",
) -> T:
    """Run ``operation`` in its own transaction, retrying when another writer wins.

    Every complaint mutation bumps the row version and claims the next
    timeline sequence, so two concurrent writers on one complaint collide on
    either the version check (StaleDataError) or the unique constraints
    (IntegrityError). The loser rolls back and replays the whole operation
    against fresh state. Notifications queued on the outbox are delivered
    only after the winning attempt commits.
    """
    max_attempts = attempts or int(current_app.config.get("COMPLAINT_WRITE_ATTEMPTS", 3))
    for attempt in range(1, max_attempts + 1):
        outbox = NotificationOutbox()
        try:
            result = operation(outbox)
            db.session.commit()
        except (StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Concurrent complaint write detected",
                extra={"operation": label, "attempt": attempt, "error": exc.__class__.__name__},
            )
            continue
        except Exception:
            db.session.rollback()
            raise

        outbox.dispatch()
        return result

    raise ConcurrentUpdate(details={"operation": label, "attempts": max_attempts})
