from contextlib import asynccontextmanager

from fastapi import FastAPI
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.mongo import connect_to_mongo, close_mongo_connection
from app.services.commitment_service import reset_commitment_service
from app.api.v1.api import api_router

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    reset_commitment_service()
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT)
