"""
Core package for shared utilities.

Configuration, structured logging, the error taxonomy and token handling
shared by the storage, service and API layers.
"""
