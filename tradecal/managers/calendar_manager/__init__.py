"""
Calendar Manager
Lifecycle scheduling and event emission for running calendars
"""
from tradecal.managers.calendar_manager.api import CalendarManager
from tradecal.managers.calendar_manager.events import EventBus, EventRecord
from tradecal.managers.calendar_manager.models import ManagerEntry, Timer

__all__ = [
    "CalendarManager",
    "EventBus",
    "EventRecord",
    "ManagerEntry",
    "Timer",
]
