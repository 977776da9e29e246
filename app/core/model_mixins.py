"""
Reusable model mixins for domain models.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key instead of auto-increment integer
    AppendOnlyMixin: Rows may be inserted but never updated afterwards

Usage:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin

    class PayoutFailureEvent(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
        payout_id = models.CharField(max_length=255)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

from core.exceptions import ConflictError

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Processor metadata and idempotency keys embed local identifiers, so
    they must be non-guessable and stable before the row is inserted.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class AppendOnlyMixin(models.Model):
    """
    Reject updates to rows that already exist in the database.

    Audit records (payout failures, for instance) are written once and then
    only read. ``save()`` on a persisted instance raises ConflictError;
    queryset ``update()`` bypasses this guard and must not be used on these
    models.
    """

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ConflictError(
                f"{self.__class__.__name__} records are immutable once written",
                error_code="IMMUTABLE_RECORD",
                details={"pk": str(self.pk)},
            )
        super().save(*args, **kwargs)
