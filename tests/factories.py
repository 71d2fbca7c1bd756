"""Shared builders for calendar tests"""
from datetime import datetime, timedelta, timezone

from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config.settings import get_settings
from app.models import Base, CalendarConnection, CalendarProvider


def setup_db(url="sqlite://"):
    """Session factory bound to a fresh SQLite database"""
    if url == "sqlite://":
        # StaticPool keeps the in-memory database on one connection across threads
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def make_connection(
        db,
        user_id="user-a",
        provider=CalendarProvider.GOOGLE,
        account_email="a@x.com",
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=None,
        is_active=True,
):
    connection = CalendarConnection(
        user_id=user_id,
        provider=CalendarProvider(provider).value,
        account_email=account_email,
        account_name="Account A",
        token_expires_at=expires_at,
        is_active=is_active,
    )
    connection.access_token = access_token
    connection.refresh_token = refresh_token
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def minutes_from_now(minutes):
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def create_access_token(data, expires_delta=None, token_type="access"):
    """Sign a bearer token the way the notes auth service issues them"""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = dict(data, exp=now + (expires_delta or timedelta(hours=1)), iat=now, type=token_type)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
