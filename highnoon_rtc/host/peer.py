"""Per-client negotiation state kept by the Host."""

from dataclasses import dataclass
from typing import Any, List, Optional

from highnoon_rtc.negotiation import Negotiation, NegotiationPhase
from highnoon_rtc.protocol import PeerInfo


@dataclass(eq=False)
class PeerRecord:
    """One joined Client as seen by the Host.

    A record is correlated with exactly one relay ``socket_id`` for its
    lifetime; answers from the Client are matched on it.

    Attributes:
        user_id: Client-chosen user id.
        socket_id: Relay transport-session id of the Client.
        negotiation: Handshake state, owning the negotiation capability.
        pending_channel: Data channel proposed to the Client, not open yet.
        channel: Data channel once open.
        is_host: True for the first joiner. Informational only.
    """

    user_id: str
    socket_id: str
    negotiation: Negotiation
    pending_channel: Any = None
    channel: Any = None
    is_host: bool = False

    @property
    def info(self) -> PeerInfo:
        return PeerInfo(user_id=self.user_id, socket_id=self.socket_id)

    @property
    def phase(self) -> NegotiationPhase:
        return self.negotiation.phase

    @property
    def local_candidates(self) -> List[dict]:
        return self.negotiation.local_candidates

    @property
    def local_candidates_collected(self) -> bool:
        return self.negotiation.local_candidates_collected

    @property
    def local_offer(self) -> Optional[dict]:
        return self.negotiation.local_description

    @property
    def foreign_answer(self) -> Optional[dict]:
        return self.negotiation.remote_description

    @property
    def foreign_candidates(self) -> List[dict]:
        return self.negotiation.remote_candidates

    @property
    def foreign_candidates_collected(self) -> bool:
        return self.negotiation.remote_candidates_collected

    @property
    def is_open(self) -> bool:
        return self.channel is not None and self.channel.readyState == "open"

    def send(self, message: str) -> bool:
        """Send text over the open channel.

        Returns:
            True if the message was handed to the channel.
        """
        if not self.is_open:
            return False
        self.channel.send(message)
        return True

    def close_channel(self) -> None:
        for channel in (self.channel, self.pending_channel):
            if channel is not None and channel.readyState != "closed":
                channel.close()
