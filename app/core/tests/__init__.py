"""
Tests for the core app.

Test modules:
    - test_exception_handler: API failure envelope
    - test_services: ServiceResult, BaseService and application exceptions
    - test_health: Health check endpoint
"""
