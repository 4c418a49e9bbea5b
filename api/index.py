from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from common.config import AppConfig
from common.log import configure_logging
from api.deps import create_services
from jobs.api import router as jobs_router
from ledger.api import router as ledger_router
from rentals.api import router as rentals_router
from settlement.api import router as settlement_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.load()
    configure_logging(config.log.level, config.log.format)
    app.state.services = create_services(config)
    yield


app = FastAPI(
    title="Tool Share Settlement API",
    description="Tool rentals, member ledgers and monthly bill settlement for tool-sharing communities",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rentals_router)
app.include_router(ledger_router)
app.include_router(settlement_router)
app.include_router(jobs_router)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "toolshare-settlement"}


handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
