"""Host framework adapters (ASGI, FastAPI, Django)."""
