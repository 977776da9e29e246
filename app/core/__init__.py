"""
Core Application - Infrastructure & Base Classes

Generic, reusable base classes shared by the domain apps (merchants,
payments). Nothing here knows about settlement.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - AppendOnlyMixin: Reject updates to persisted rows

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes and HTTP status
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, illegal transitions)

Views (import from core.views):
    - health_check: Database connectivity probe
"""
