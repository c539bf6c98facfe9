from .assets_api import router as assets_api_router
from .audits_api import router as audits_api_router
from .borrow_requests_api import router as borrow_requests_api_router
from .categories_api import router as categories_api_router
from .notifications_api import router as notifications_api_router

ALL_ROUTERS = (
    assets_api_router,
    categories_api_router,
    borrow_requests_api_router,
    audits_api_router,
    notifications_api_router,
)
