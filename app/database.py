from sqlmodel import SQLModel, create_engine, Session
from app.config import settings


connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,      # checks dead connections
    connect_args=connect_args,
)


def create_db_and_tables(bind=None):
    from app.models import user, coupon, order, order_item, order_status_history, payment_method
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
