"""Driver advancing an idempotent request through its recovery points.

An endpoint declares its stages as a mapping from recovery point name to
stage function; the runner loops until the record reaches ``finished``:

    started ──stage──▶ <next point> ──stage──▶ ... ──▶ finished

A stage either names the next recovery point or returns the final response.
A failing stage leaves the record finished with a 500 response (see
``IdempotencyKeyService.work_stage``) and the loop stops. The loop never
retries; a client retrying with the same key re-enters at the record's
current recovery point, so stages that already completed are not run again.
"""

import logging
from typing import Mapping

from apps.core.context import TransactionScope
from apps.core.errors import UnknownStage

from .models import IdempotencyKey
from .services import IdempotencyKeyService, StageFn, error_body

logger = logging.getLogger("idempotency.runner")


class RecoveryPointRunner:
    def __init__(self, ledger: IdempotencyKeyService, stages: Mapping[str, StageFn]):
        if IdempotencyKey.FINISHED in stages:
            raise ValueError("'finished' is terminal and cannot have a stage")
        self.ledger = ledger
        self.stages = dict(stages)

    def run(self, scope: TransactionScope, record: IdempotencyKey) -> IdempotencyKey:
        """Advance ``record`` until it is finished.

        Args:
            scope: Transaction scope used for every stage.
            record: Record returned by ``initialize_request``.

        Returns:
            IdempotencyKey: The finished record holding the response to send.

        Raises:
            AlreadyInProgress: Another worker holds the record lock.
        """
        key = record.idempotency_key
        while record.recovery_point != IdempotencyKey.FINISHED:
            stage = self.stages.get(record.recovery_point)
            if stage is None:
                logger.error(
                    "unknown recovery point",
                    extra={"idempotency_key": key, "recovery_point": record.recovery_point},
                )
                record = self.ledger.update(
                    scope,
                    key,
                    recovery_point=IdempotencyKey.FINISHED,
                    response_code=500,
                    response_body=error_body(UnknownStage("Unknown recovery point")),
                )
                break

            result = self.ledger.work_stage(scope, key, stage)
            record = result.key
            if result.error is not None:
                break
        return record
