"""
Authorization for the gateway: the backend-facing webhook and the
credentials attached to forwarded requests.
"""
