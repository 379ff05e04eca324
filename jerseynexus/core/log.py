from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger

from jerseynexus.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[log_id]} | {message}"

logger.configure(extra={"log_id": "-"})
logger.add(
    settings.LOG_FILE,
    format=LOG_FORMAT,
    level=settings.LOG_LEVEL,
    rotation=settings.LOG_ROTATION,
    retention=settings.LOG_RETENTION,
    compression=settings.LOG_COMPRESSION,
    enqueue=settings.LOG_ENQUEUE,
)


async def log_middleware(request: Request, call_next):
    log_id = str(uuid4())
    with logger.contextualize(log_id=log_id):
        try:
            response = await call_next(request)
            status_code = response.status_code
            if status_code in settings.LOG_WARNING_STATUS_CODES:
                logger.warning(
                    f"{request.method} {request.url.path} failed ({status_code})"
                )
            else:
                logger.info(
                    f"{request.method} {request.url.path} ({status_code})"
                )
        except Exception as ex:
            logger.exception(f"{request.method} {request.url.path} crashed: {ex}")
            content = {"success": False, "error": "Internal Server Error"}
            if settings.ENVIRONMENT == "development":
                content["error"] = str(ex)
            response = JSONResponse(content=content, status_code=500)
        return response


def log_payment_event(event: str, payment_id: str, **extra):
    logger.bind(payment_id=payment_id, **extra).info(f"payment {event}: {payment_id} {extra}")


def log_order_event(event: str, order_id: int, **extra):
    logger.bind(order_id=order_id, **extra).info(f"order {event}: #{order_id} {extra}")


def log_auth_event(event: str, email: str, success: bool = True):
    if success:
        logger.info(f"auth {event}: {email}")
    else:
        logger.warning(f"auth {event} rejected: {email}")
