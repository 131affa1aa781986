import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from tutor_scheduler.core import config
from tutor_scheduler.database import Base, engine, ensure_policy_schema
from tutor_scheduler.models import availability
from tutor_scheduler.routes import availability_routes, booking_routes

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

config.validate_runtime_config()

app = FastAPI(title='Tutor Scheduler API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine, tables=[
            availability.AvailabilityDefault.__table__,
            availability.AvailabilityException.__table__,
        ])
        ensure_policy_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Tutor Scheduler API Running', 'timezone': config.BUSINESS_TIMEZONE}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/booking')
