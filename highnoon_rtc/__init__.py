"""HighNoon-RTC: relay-introduced WebRTC data-channel rooms."""

from highnoon_rtc.client.client_class import ClientSession, ClientState
from highnoon_rtc.config import SessionOptions, get_config
from highnoon_rtc.exceptions import HighNoonError
from highnoon_rtc.host.host_class import HostSession
from highnoon_rtc.protocol import ClientListData, HNResponse, PeerInfo

__version__ = "0.1.0"

__all__ = [
    "ClientSession",
    "ClientState",
    "HostSession",
    "SessionOptions",
    "get_config",
    "HighNoonError",
    "ClientListData",
    "HNResponse",
    "PeerInfo",
]
