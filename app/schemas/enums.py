from enum import Enum

class PresenceStatus(str, Enum):
    not_sharing = "not_sharing"
    online = "online"
    recently_active = "recently_active"
    offline = "offline"

class GeolocationError(str, Enum):
    permission_denied = "permission_denied"
    position_unavailable = "position_unavailable"
    timeout = "timeout"

class ProductionRole(str, Enum):
    admin = "admin"
    manager = "manager"
    member = "member"

class ChangeEventType(str, Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"
