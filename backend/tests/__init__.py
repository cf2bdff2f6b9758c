"""
Pytest test suite for the storefront backend.

Test categories:
- Unit tests: Service layer with the payment gateway mocked
- Integration tests: Full FastAPI app with in-memory SQLite
- Edge case tests: Replays, races on the last coupon use, gateway failures
"""
