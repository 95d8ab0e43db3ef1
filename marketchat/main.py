import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from .routes import router
from .core import kafka_startup, redis_startup, init_metrics, shutdown_connections
from .errors import MessagingError, Unavailable
import logging
from pythonjsonlogger import jsonlogger

# setup structured logging
logger = logging.getLogger('marketchat')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(os.getenv('LOG_LEVEL', 'INFO'))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Best-effort init, don't block app from starting if a dependency fails
    try:
        await redis_startup()
    except Exception as e:
        logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
    try:
        await kafka_startup()
    except Exception as e:
        logger.warning({'msg': 'kafka_start_failed', 'error': str(e)})
    try:
        init_metrics()
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})
    yield
    await shutdown_connections()


app = FastAPI(title="MarketChat API", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(router, prefix="/api")


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    if exc.status_code >= 500:
        logger.error({'msg': 'messaging_error', 'code': exc.code, 'error': exc.message, 'path': request.url.path})
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message, 'code': exc.code})


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def store_unavailable_handler(request: Request, exc: Exception):
    logger.error({'msg': 'store_unavailable', 'error': str(exc), 'path': request.url.path})
    err = Unavailable('Storage temporarily unavailable')
    return JSONResponse(status_code=err.status_code, content={'detail': err.message, 'code': err.code})


@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}


@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
    response = await call_next(request)
    logger.info({'msg': 'request_end', 'status': response.status_code})
    return response
