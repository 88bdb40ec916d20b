from .protocol import CapabilityCall, CapabilityName, CapabilityResult, Failure, Success
from .server import CapabilityServer
