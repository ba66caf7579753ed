"""
Core package for shared utilities.

Configuration, structured logging and token handling shared across the
service.
"""
