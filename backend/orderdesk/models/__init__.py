from .auth import User, SessionToken
from .security import SecurityEvent, LoginAttempt, LoginLockout
from .metadata import ColumnDefinition, RolePermission
from .records import Order, Cost, COLLECTION_MODELS
from .workflow import PendingChange
from .audit import AuditLog

__all__ = [
    'User', 'SessionToken',
    'SecurityEvent', 'LoginAttempt', 'LoginLockout',
    'ColumnDefinition', 'RolePermission',
    'Order', 'Cost', 'COLLECTION_MODELS',
    'PendingChange',
    'AuditLog',
]
