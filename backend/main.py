import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.errors import DATABASE_UNAVAILABLE_MESSAGE, AppointmentError
from backend.core.rate_limit import limiter
from backend.core.security_headers import SecurityHeadersMiddleware
from backend.database import Base, engine, ensure_availability_schema, ensure_appointment_schema
from backend.models import appointment, availability, department, faculty, student, user  # noqa: F401
from backend.routes import (
    appointment_routes,
    auth_routes,
    availability_routes,
    department_routes,
    faculty_routes,
    student_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Faculty Appointment Booking API')
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecurityHeadersMiddleware, exclude_paths=['/docs', '/redoc', '/openapi.json'])

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def error_response(status_code: int, kind: str, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'kind': kind, 'detail': detail})


@app.exception_handler(AppointmentError)
async def handle_appointment_error(request: Request, exc: AppointmentError) -> JSONResponse:
    return error_response(exc.status_code, exc.kind, exc.message)


def handle_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning('Rate limit hit by %s on %s', request.client.host if request.client else '-', request.url.path)
    return error_response(429, 'rate_limited', f'Too many requests: {exc.detail}')


app.add_exception_handler(RateLimitExceeded, handle_rate_limited)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ()) if part != 'body')
        messages.append(f"{location}: {error.get('msg')}" if location else error.get('msg'))
    return error_response(400, 'invalid_argument', '; '.join(messages))


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Database error while handling %s %s', request.method, request.url.path)
    return error_response(503, 'unavailable', DATABASE_UNAVAILABLE_MESSAGE)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error while handling %s %s', request.method, request.url.path)
    detail = str(exc) if config.is_development() else 'Server error'
    return error_response(500, 'internal', detail)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
@limiter.exempt
def root():
    return {'status': 'Faculty Appointment Booking API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(availability_routes.router, prefix='/faculty/availability')
app.include_router(faculty_routes.router, prefix='/faculty')
app.include_router(student_routes.router, prefix='/students')
app.include_router(department_routes.router, prefix='/departments')
