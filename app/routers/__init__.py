"""
API routers package
"""

from app.routers.matching import router as matching_router
from app.routers.records import router as records_router
