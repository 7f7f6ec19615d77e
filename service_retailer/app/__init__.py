"""
Retailer access service.

Proxies the partner's rate-limited retailer API. Modules:

- ratelimit: the partner's published quota table and derived timings
- auth: OAuth2 client-credentials token slot
- caching: two-tier (memory + JSON file) response cache
- adapters: the authenticated request pipeline
- main: FastAPI application wiring
"""
