"""Opening hours for a restaurant (times are local to ``Restaurant.timezone``)."""
from sqlalchemy import Column, String, Integer, Boolean, Date, Time, ForeignKey
from qrorder.database import Base
from qrorder.models.base import new_id


class OperatingHour(Base):
    """Weekly schedule row. day_of_week: 0=Sunday ... 6=Saturday."""

    __tablename__ = 'restaurant_operating_hour'

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey('restaurant.id'), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)
    is_closed = Column(Boolean, nullable=False, default=False)


class ScheduleException(Base):
    """Holiday / special day overriding the weekly schedule."""

    __tablename__ = 'restaurant_schedule_exception'

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey('restaurant.id'), nullable=False, index=True)
    exception_date = Column(Date, nullable=False)
    is_closed_all_day = Column(Boolean, nullable=False, default=False)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    reason = Column(String(255), nullable=True)
