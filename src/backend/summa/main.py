import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from summa import __version__
from summa.config import settings
from summa.routers import analysis, series, snapshots

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Summa API",
    description="Balance tracking from screenshots",
    version=__version__
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {
        "message": settings.APP_NAME,
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(snapshots.router)
app.include_router(series.router)
app.include_router(analysis.router)
