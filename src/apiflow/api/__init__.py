"""HTTP surface: FastAPI app, composition root and routes."""
