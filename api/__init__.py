"""api/ -- FastAPI application object, lifecycle and JSON endpoints.

Layer rule: api/ may import from auth/ and core/, never from web/.
"""
