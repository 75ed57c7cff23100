"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by domain apps:

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: logger and transaction helpers
    - ServiceResult: success/failure wrapper

Errors (import from core.exceptions / core.exception_handler):
    - BaseApplicationError hierarchy with per-class HTTP status
    - api_exception_handler: renders the uniform failure envelope
"""
