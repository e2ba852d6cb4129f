from enum import Enum

class ConsentType(str, Enum):
    LOCATION_TRACKING = "location_tracking"
    ACTIVITY_MONITORING = "activity_monitoring"
    REMINDER_MANAGEMENT = "reminder_management"
    MANAGE_SAFE_ZONES = "manage_safe_zones"
