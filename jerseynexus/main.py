from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from jerseynexus.core.config import settings
from jerseynexus.core.errors import register_exception_handlers
from jerseynexus.core.log import log_middleware
from jerseynexus.db.session import create_db_and_tables
from jerseynexus.routers import (
    auth,
    blogs,
    cart,
    categories,
    health,
    homepage,
    orders,
    payments,
    products,
    realtime,
    reviews,
    uploads,
    users,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} started ({settings.ENVIRONMENT})")
    yield
    logger.info(f"{settings.PROJECT_NAME} shutting down")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    description="API for the JerseyNexus jersey store",
)

app.middleware("http")(log_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(categories.router, prefix="/api/categories", tags=["categories"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(cart.router, prefix="/api/cart", tags=["cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(reviews.router, prefix="/api/reviews", tags=["reviews"])
app.include_router(blogs.router, prefix="/api/blogs", tags=["blogs"])
app.include_router(homepage.router, prefix="/api/homepage", tags=["homepage"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(uploads.router, prefix="/api/uploads", tags=["uploads"])
