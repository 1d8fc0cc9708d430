"""HTTP server: job coordination, artifact storage and FastAPI routes."""
