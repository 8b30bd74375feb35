import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from rentals import settings
from rentals.cache import get_redis_cache
from rentals.routers import admin, booking, broadcast, deal, review, vehicle


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = get_redis_cache()
    if not await cache.connect():
        logger.warning("Starting without Redis; reads go straight to the database")

    async with RegisterTortoise(
        app,
        config=settings.TORTOISE_ORM,
        generate_schemas=settings.GENERATE_SCHEMAS,
    ):
        logger.info("Rentals service started")
        yield

    await cache.close()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Vehicle Rentals", lifespan=lifespan)
    for module in (vehicle, booking, deal, review, broadcast, admin):
        app.include_router(module.router)
    return app


app = create_app()
