"""
Lensmatch — Main API Router

Aggregates all sub-routers under a single prefix so that ``lensmatch.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from lensmatch.api import admin_embeddings, admin_matching, matching

router = APIRouter()

router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(
    admin_embeddings.router, prefix="/admin/embeddings", tags=["Admin - Embeddings"]
)
router.include_router(admin_matching.router, prefix="/admin/matching", tags=["Admin - Matching"])
