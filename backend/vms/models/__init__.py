from .auth import User
from .visitors import Visitor, VisitorRequest
from .visits import Visit
from .communications import Notification
from .activity import ActivityLog

__all__ = [
    'User',
    'Visitor',
    'VisitorRequest',
    'Visit',
    'Notification',
    'ActivityLog',
]
