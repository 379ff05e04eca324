from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from jerseynexus.core.config import settings
from jerseynexus.db.session import check_database, get_session

router = APIRouter()


@router.get("/")
def root():
    return {
        "success": True,
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "version": settings.VERSION,
        "endpoints": {
            "health": "/health",
            "database": "/health/database",
            "docs": "/docs",
            "auth": "/api/auth",
            "users": "/api/users",
            "categories": "/api/categories",
            "products": "/api/products",
            "cart": "/api/cart",
            "orders": "/api/orders",
            "reviews": "/api/reviews",
            "blogs": "/api/blogs",
            "homepage": "/api/homepage",
            "payments": "/api/payments",
            "uploads": "/api/uploads",
            "websocket": "/ws",
        },
    }


@router.get("/health")
def health():
    return {
        "status": "OK",
        "message": f"{settings.PROJECT_NAME} is running",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/database")
def health_database(session: Session = Depends(get_session)):
    try:
        result = check_database(session)
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Database connection failed", "details": str(e)},
        )
    status_code = 200 if result["healthy"] else 500
    body = {
        "success": result["healthy"],
        "message": "Database is healthy" if result["healthy"] else "Database checks failed",
        "data": result,
        "timestamp": datetime.utcnow(),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
