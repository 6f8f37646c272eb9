"""Server — config, database and the FastAPI app (server.app)."""
