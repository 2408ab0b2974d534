"""
ASGI entrypoint: expose `app` pour les process managers (ex: uvicorn commerce.asgi:app).
Toute la configuration est centralisée dans commerce.app_setup.factory.
"""

from commerce.app_setup.factory import create_app

app = create_app()
