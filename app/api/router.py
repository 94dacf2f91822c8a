# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_billing,
    routes_stock,
)

api_router = APIRouter()

api_router.include_router(routes_billing.router)
api_router.include_router(routes_stock.router)
