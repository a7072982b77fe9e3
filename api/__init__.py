"""
SQL Validation API
==================

FastAPI service exposing the validation pipeline.
"""

__version__ = "0.1.0"
