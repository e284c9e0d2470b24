"""ASGI entry point: ``uvicorn kvcache.apps.api.asgi:app``."""

from kvcache.apps.api.main import create_app

app = create_app()
