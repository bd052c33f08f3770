"""
Adapters for external services used by the gateway.
"""
