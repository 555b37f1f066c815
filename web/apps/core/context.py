"""Explicit transaction scope passed to every service operation.

Services never reach for an ambient database connection or "current user":
callers build a ``TransactionScope`` at the edge (the view, a test, a
management command) and hand it down. Operations open ``scope.atomic()``
around their reads and writes; nested calls become savepoints of the
caller's transaction.
"""

from dataclasses import dataclass
from typing import Optional

from django.db import DEFAULT_DB_ALIAS, transaction


@dataclass(frozen=True)
class TransactionScope:
    """Database alias and acting user for one logical operation.

    Attributes:
        using: Django database alias every query and write goes through.
        actor_id: Id of the user or customer performing the operation,
            recorded in ``created_by`` / ``confirmed_by`` style fields.
    """

    using: str = DEFAULT_DB_ALIAS
    actor_id: Optional[str] = None

    def atomic(self):
        return transaction.atomic(using=self.using)

    def objects(self, model):
        """Return ``model``'s default manager bound to this scope's database."""
        return model._default_manager.db_manager(self.using)

    def as_actor(self, actor_id: Optional[str]) -> "TransactionScope":
        return TransactionScope(using=self.using, actor_id=actor_id)
