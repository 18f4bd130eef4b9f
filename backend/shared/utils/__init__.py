"""
Shared utilities: the relay error hierarchy.
"""
