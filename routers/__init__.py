from .items_api import router as items_api_router
from .reservations_api import router as reservations_api_router
from .returns_api import router as returns_api_router
from .reputation_api import router as reputation_api_router

ALL_ROUTERS = (
    items_api_router,
    reservations_api_router,
    returns_api_router,
    reputation_api_router,
)
