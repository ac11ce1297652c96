"""api/ -- FastAPI adapter for the identity service.

Layer rule: api/ may import from identity/ and core/. Nothing imports from
api/ except the ASGI server and the tests.
"""
