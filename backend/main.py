from fastapi import FastAPI
from contextlib import asynccontextmanager

from casecontrol import __version__
from casecontrol.core.config import settings
from casecontrol.api.routes import matching


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    print(f"Starting {settings.PROJECT_NAME}...")
    yield
    # Shutdown
    print("Shutdown complete.")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Case-control matching for observational cohort studies",
    version=__version__,
    lifespan=lifespan
)

# Include routers
app.include_router(
    matching.router,
    prefix=f"{settings.API_V1_STR}/matching",
    tags=["Matching"]
)


@app.get("/")
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": __version__,
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
