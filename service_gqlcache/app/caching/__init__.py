"""
Gateway caching package.

Caches successful GraphQL query responses. Entries carry their own TTL and
are judged on every lookup; mutations never touch the store.
"""
