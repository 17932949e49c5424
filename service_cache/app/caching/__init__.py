"""
Response caching primitives: key derivation, header policy, payload codec,
the request/response engine, and the ASGI middleware that drives it.
"""
