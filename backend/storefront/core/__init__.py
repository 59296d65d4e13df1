"""
Core package for configuration, logging, errors and session identity.
"""
