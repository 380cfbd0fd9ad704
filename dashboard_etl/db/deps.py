from sqlalchemy.orm import Session

from dashboard_etl.db.base import SessionLocal


def get_session():
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
