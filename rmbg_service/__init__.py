"""
RMBG background removal microservice package.

Exposes reusable primitives for decoding image envelopes, loading the model,
running the request pipeline, and serving the FastAPI application.
"""
