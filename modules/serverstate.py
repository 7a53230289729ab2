from enum import Enum


# Define server states for better status tracking
class ServerState(Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    PREFLIGHT_FAILED = "PREFLIGHT_FAILED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


# Known reasons a start attempt can fail before the server is up
class PreflightFailure(Enum):
    EULA = "EULA"
    WORLD = "WORLD"
