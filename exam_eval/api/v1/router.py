"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from exam_eval.api.v1.endpoints import evaluations

api_router = APIRouter()

# CQ exam evaluation (authenticated)
api_router.include_router(
    evaluations.router,
    prefix="/evaluations",
    tags=["Evaluations"],
)
