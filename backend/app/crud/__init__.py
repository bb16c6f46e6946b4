from .crud_booking import booking
from . import crud_booking
from . import crud_availability
from . import crud_notification
