"""
Cashflow Platform Unit Tests
============================

Unit tests for the engines and the API endpoints.

Test Modules
------------
test_dates, test_curves
    Day counts, business-day adjustment and curve interpolation.
test_rates, test_timing
    RateEngine lookups and TimingEngine factors.
test_compute, test_scenarios, test_assumptions
    Conditional-logic evaluator, scenario vectors and assumption sets.
test_collateral, test_pricing, test_waterfall
    Cashflow projection, pricing analytics and waterfall allocation.
test_reporting, test_config
    Report tables, projection orchestration and settings.
test_api_integration
    HTTP endpoints via the FastAPI TestClient.

Running Tests
-------------
Execute all tests with pytest::

    pytest cashflow_platform/unit_tests/ -v
"""
