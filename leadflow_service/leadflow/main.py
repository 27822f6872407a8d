import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from leadflow.config import get_settings
from leadflow.dependencies import get_orchestrator
from leadflow.logging_config import configure_logging
from leadflow.routers.scrape_jobs import router as scrape_jobs_router
from leadflow.routers.verification import router as verification_router

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger('leadflow.main')


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator = get_orchestrator()
    try:
        recovered = await orchestrator.recover_jobs()
    except Exception:
        logger.exception('Recovering active scrape jobs failed')
    else:
        if recovered:
            logger.info('Recovered %d active scrape jobs', recovered)
    yield
    await orchestrator.shutdown()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.include_router(scrape_jobs_router)
app.include_router(verification_router)


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}
