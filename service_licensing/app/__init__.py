"""
Licensing Service package.

Decides, for every request from the developer tool, whether the calling
app/user combination is entitled to proceed, and reconciles app, user and
organization records stored as whole JSON documents.

Structure:
- app.main: FastAPI service, endpoint registration.
- app.models: Persisted entities, verdicts and wire codes.
- app.cache: Single-flight, TTL-expiring entity cache.
- app.storage: Versioned document stores (Redis, in-memory).
- app.claims / app.permission: Pure claim and permission resolvers.
- app.pipeline: Ordered stages, fail-open orchestrator, response post-processing.
- app.writeback: Deferred optimistic-concurrency writebacks and metering.
- app.http: Header parsing, version guard, request handling.
"""
