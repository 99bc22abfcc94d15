# --------------------------------------------------
# PRESENCE
# --------------------------------------------------

# Last update younger than this -> online
ONLINE_THRESHOLD_MINUTES = 5

# Last update younger than this -> recently active, otherwise offline
RECENTLY_ACTIVE_THRESHOLD_MINUTES = 30

# --------------------------------------------------
# SUBSCRIBER
# --------------------------------------------------

# Fallback re-fetch interval, fires even if the change channel drops
POLL_INTERVAL_SECONDS = 30

# --------------------------------------------------
# MAP
# --------------------------------------------------

DEFAULT_MAP_CENTER = (40.7128, -74.0060)
DEFAULT_MAP_ZOOM = 10

GOOGLE_MAPS_SCRIPT_URL = "https://maps.googleapis.com/maps/api/js"

UNKNOWN_USER_NAME = "Unknown User"
