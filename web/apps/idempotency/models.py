from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class IdempotencyKey(models.Model):
    """Durable record of a multi-stage request identified by an idempotency key.

    ``recovery_point`` names the next stage to run; ``finished`` is terminal
    and the stored response is replayed to every retry. ``locked_at`` marks
    the record as owned by a worker currently running a stage.
    """

    STARTED = "started"
    FINISHED = "finished"

    idempotency_key = models.CharField(max_length=255, primary_key=True)
    created_at = models.DateTimeField(auto_now_add=True)
    locked_at = models.DateTimeField(null=True, blank=True)
    request_method = models.CharField(max_length=16, blank=True, default="")
    request_params = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    request_path = models.CharField(max_length=512, blank=True, default="")
    response_code = models.PositiveSmallIntegerField(null=True, blank=True)
    response_body = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    recovery_point = models.CharField(max_length=64, default=STARTED)

    class Meta:
        db_table = "idempotency_keys"

    def __str__(self):
        return f"IdempotencyKey({self.idempotency_key}, {self.recovery_point})"
