import uuid

from django.db import models


class StagedEvent(models.Model):
    """Lifecycle event written in the same transaction as the change it announces.

    Rows only exist if the surrounding transaction committed, so subscribers
    reading the table never see events of rolled back work.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_name = models.CharField(max_length=128, db_index=True)
    data = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "staged_events"
        ordering = ["created_at"]

    def __str__(self):
        return f"StagedEvent({self.event_name}, {self.data})"
