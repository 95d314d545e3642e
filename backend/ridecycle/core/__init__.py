"""
Core package for shared utilities.

Configuration, structured logging, error taxonomy and token helpers used
across the API, services and background jobs.
"""
