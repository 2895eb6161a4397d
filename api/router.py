from fastapi import APIRouter

from api.v1.bids import router as bids_router
from api.v1.classes import router as classes_router
from api.v1.events import router as events_router
from api.v1.opportunities import router as opportunities_router
from api.v1.selections import router as selections_router
from api.v1.students import router as students_router

router = APIRouter()

# Include v1 routers
router.include_router(classes_router, prefix="/v1")
router.include_router(students_router, prefix="/v1")
router.include_router(opportunities_router, prefix="/v1")
router.include_router(bids_router, prefix="/v1")
router.include_router(selections_router, prefix="/v1")

# Live updates
router.include_router(events_router, prefix="/v1")
