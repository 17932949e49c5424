"""
Response cache service package.

The service sits in front of a content API and replays stored responses
for repeated requests, invalidating them when content changes:
- Keys: method + decoded URL, or a digest of the GraphQL payload
- Storage: in-process LRU, single Redis node, or Redis Cluster
- Invalidation: regex purges driven by content mutation events

Structure:
- app.main: FastAPI app, purge routes, and lifecycle wiring.
- app.config: Cache settings and startup validation.
- app.caching: Key builder, header policy, body codec, engine, middleware.
- app.storage: Storage providers behind one contract.
- app.invalidation: Schema registry capability and the invalidator.
"""
