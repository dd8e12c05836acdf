"""HTTP API — FastAPI application, middleware and request schemas."""
