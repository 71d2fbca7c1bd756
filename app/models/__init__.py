# app/models/__init__.py
from .base import Base
from .calendar_connection import CalendarConnection, CalendarProvider

__all__ = [
    "Base",
    "CalendarConnection",
    "CalendarProvider",
]
