"""
Cashflow Platform
=================

Cash-flow projection, pricing and payment-waterfall engines for
amortizing fixed-income and asset-backed instruments, with a stateless
FastAPI service on top.

Subpackages
-----------
engine
    Projection, scenario, timing, rate, pricing and waterfall engines.

Modules
-------
config
    Environment-driven settings.
api_main / api_models
    HTTP service and its request/response models.
"""

__version__ = "1.0.0"
