from .inventory_api import router as inventory_api_router
from .loans_api import router as loans_api_router

ALL_ROUTERS = (
    inventory_api_router,
    loans_api_router,
)
