"""
Registre central des routers.
- API: orders (+ adresses), cart, payments (webhook Stripe)
- Health: health_router
"""
from fastapi import FastAPI

from commerce.cart import views as cart_views
from commerce.health.router import router as health_router
from commerce.orders import views as orders_views
from commerce.payments import views as payments_views


def register_routers(app: FastAPI) -> None:
    app.include_router(orders_views.router)
    app.include_router(orders_views.address_router)
    app.include_router(cart_views.router)
    app.include_router(payments_views.router)
    # Health & monitoring
    app.include_router(health_router)
