"""
Imagery Test Suite

Structure:
- unit/: parser, transform/codec, artifact cache, resolver, config/registry
- integration/: FastAPI app end-to-end through TestClient
"""
