"""
GraphQL cache gateway service package.

The gateway fronts a GraphQL backend, providing:
- Response caching for queries, keyed by path, requested TTL and body digest
- Pass-through (or blocking) of mutations and CORS preflight requests
- An IP-gated authorization webhook returning a role to the backend

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.caching: Classification, key derivation, freshness, stores, orchestration.
- app.auth: Webhook handler, source IP filter, backend authentication strategies.
- app.adapters: HTTP client for the GraphQL backend.
"""
