from fastapi import APIRouter
from app.api.routes import auth, verification

router = APIRouter()
router.include_router(verification.router, prefix="/verification", tags=["verification"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
