"""Idempotency ledger for multi-stage requests.

The ledger stores one ``IdempotencyKey`` per logical request. The first
request with a key creates the record; every retry gets the same record
back, positioned at the recovery point where the previous attempt stopped.
Each stage runs under a lock on the record so two workers never execute
the same stage of the same request at once.

Concurrency:
    - Record creation runs in a savepoint; a unique-key ``IntegrityError``
      means another request created the key first, and the existing record
      is loaded instead.
    - Locking is a conditional ``UPDATE ... WHERE locked_at IS NULL``. A
      worker that does not win the update fails immediately with
      ``AlreadyInProgress`` rather than waiting.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Union

from django.db import IntegrityError
from django.utils import timezone

from apps.core.context import TransactionScope
from apps.core.errors import (
    AlreadyInProgress,
    CommerceError,
    ConcurrentIdempotentRequest,
    NotFound,
)

from .models import IdempotencyKey

logger = logging.getLogger("idempotency")


@dataclass(frozen=True)
class StageResponse:
    """Final response produced by a stage; moves the record to ``finished``."""

    response_code: int
    response_body: dict


@dataclass(frozen=True)
class StageResult:
    """Outcome of ``work_stage``.

    Attributes:
        key: The record after the stage, lock released.
        error: The exception raised by the stage, if any. The record then
            already holds a finished 500 response describing it.
    """

    key: IdempotencyKey
    error: Optional[Exception] = None


StageFn = Callable[[TransactionScope], Union[StageResponse, str]]


def error_body(err: Exception) -> dict:
    if isinstance(err, CommerceError):
        return err.as_body()
    return {"detail": CommerceError.code, "message": str(err) or err.__class__.__name__}


class IdempotencyKeyService:
    """Create, lock and advance idempotency records."""

    def retrieve(self, scope: TransactionScope, key: str) -> IdempotencyKey:
        try:
            return scope.objects(IdempotencyKey).get(idempotency_key=key)
        except IdempotencyKey.DoesNotExist:
            raise NotFound(f"Idempotency key {key} not found")

    def find(self, scope: TransactionScope, key: str) -> Optional[IdempotencyKey]:
        return scope.objects(IdempotencyKey).filter(idempotency_key=key).first()

    def create(self, scope: TransactionScope, **fields) -> IdempotencyKey:
        fields.setdefault("idempotency_key", str(uuid.uuid4()))
        return scope.objects(IdempotencyKey).create(**fields)

    def update(self, scope: TransactionScope, key: str, **values) -> IdempotencyKey:
        updated = scope.objects(IdempotencyKey).filter(idempotency_key=key).update(**values)
        if not updated:
            raise NotFound(f"Idempotency key {key} not found")
        return self.retrieve(scope, key)

    def initialize_request(
        self,
        scope: TransactionScope,
        header_key: str,
        method: str,
        params: dict,
        path: str,
    ) -> IdempotencyKey:
        """Return the record for ``header_key``, creating it on first sight.

        Args:
            scope: Transaction scope.
            header_key: Client supplied key; empty means "generate one".
            method: HTTP method of the request.
            params: Path parameters of the request.
            path: Request path.

        Returns:
            IdempotencyKey: New record at ``started``, or the existing one
            unchanged.

        Raises:
            ConcurrentIdempotentRequest: A racing request created the same key
                and currently holds its lock.
        """
        if header_key:
            existing = self.find(scope, header_key)
            if existing is not None:
                return existing

        fields = dict(
            request_method=method,
            request_params=params or {},
            request_path=path,
            recovery_point=IdempotencyKey.STARTED,
        )
        if header_key:
            fields["idempotency_key"] = header_key

        try:
            # Savepoint: an IntegrityError only rolls back this block.
            with scope.atomic():
                record = self.create(scope, **fields)
        except IntegrityError:
            record = self.retrieve(scope, header_key)
            if record.locked_at is not None:
                raise ConcurrentIdempotentRequest(
                    f"Request with idempotency key {header_key} is already being processed"
                )
            return record

        logger.info("idempotency key created", extra={"idempotency_key": record.idempotency_key, "path": path})
        return record

    def lock(self, scope: TransactionScope, key: str) -> IdempotencyKey:
        """Mark the record as owned by the calling worker.

        Raises:
            AlreadyInProgress: Another worker holds the lock.
            NotFound: Unknown key.
        """
        locked = (
            scope.objects(IdempotencyKey)
            .filter(idempotency_key=key, locked_at__isnull=True)
            .update(locked_at=timezone.now())
        )
        if not locked:
            self.retrieve(scope, key)
            raise AlreadyInProgress(f"Request with idempotency key {key} is already in progress")
        return self.retrieve(scope, key)

    def work_stage(self, scope: TransactionScope, key: str, stage_fn: StageFn) -> StageResult:
        """Run one stage of the request under the record lock.

        ``stage_fn`` receives the scope and returns either a ``StageResponse``
        (the request is finished) or the name of the next recovery point.
        Its writes run in a savepoint; if it raises, they are rolled back and
        the record becomes ``finished`` with a 500 response carrying the
        error, so a retrying client gets that response instead of repeating
        the failing stage.

        Args:
            scope: Transaction scope.
            key: Idempotency key of the record.
            stage_fn: The stage to run.

        Returns:
            StageResult: Updated record and the stage error, if any.

        Raises:
            AlreadyInProgress: Another worker holds the lock.
        """
        self.lock(scope, key)
        try:
            with scope.atomic():
                outcome = stage_fn(scope)
                if isinstance(outcome, StageResponse):
                    values = dict(
                        recovery_point=IdempotencyKey.FINISHED,
                        response_code=outcome.response_code,
                        response_body=outcome.response_body,
                    )
                elif isinstance(outcome, str) and outcome:
                    values = dict(recovery_point=outcome)
                else:
                    raise TypeError(f"Stage returned {outcome!r}, expected StageResponse or a recovery point")
                record = self.update(scope, key, locked_at=None, **values)
        except Exception as err:
            logger.exception("idempotent stage failed", extra={"idempotency_key": key})
            record = self.update(
                scope,
                key,
                locked_at=None,
                recovery_point=IdempotencyKey.FINISHED,
                response_code=500,
                response_body=error_body(err),
            )
            return StageResult(key=record, error=err)

        logger.info(
            "idempotent stage completed",
            extra={"idempotency_key": key, "recovery_point": record.recovery_point},
        )
        return StageResult(key=record)
