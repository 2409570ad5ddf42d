from fastapi import APIRouter

router = APIRouter()


@router.get("/")
def root():
    return {"success": True, "message": "Felicity events API is running"}


@router.get("/health")
def health_check():
    return {"success": True, "status": "healthy"}
