from fastapi import APIRouter

from app.services.analysis_service import get_analysis_service

router = APIRouter()


@router.get("/health", summary="Health Check", description="Check the health status of the application.")
async def health_check():
    return {"status": "healthy"}


@router.get("/models", summary="Analysis Models", description="List the models the analysis step can fall back to.")
async def list_models():
    service = get_analysis_service()
    return {"default": service.default_model, "models": service.available_models()}
