"""FastAPI dependencies resolving services from application state."""
