"""Offer/answer handshake shared by Host and Client.

Both roles run the same four steps with reversed initiative:

1. Initiator creates an offer, sets it local and starts gathering.
2. Initiator waits for gathering "complete" and sends ``{offer, candidates}``.
3. Responder applies the offer and candidates, creates an answer, sets it
   local, gathers, and on "complete" sends ``{answer, candidates}``.
4. Initiator applies the answer and candidates. The link is up once the data
   channel opens.

The SDP/ICE work itself is done by a ``NegotiationCapability``. The default
capability wraps ``aiortc`` (see ``highnoon_rtc.capability``).
"""

import importlib.util
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, List, Optional

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)

GATHERING_COMPLETE = "complete"


def is_webrtc_available() -> bool:
    """Whether the default negotiation capability can be used here."""
    return importlib.util.find_spec("aiortc") is not None


def default_capability_factory(ice_servers: Optional[List[dict]] = None):
    """Build the aiortc-backed capability."""
    from highnoon_rtc.capability import AiortcCapability

    return AiortcCapability(ice_servers)


class NegotiationCapability(AsyncIOEventEmitter, ABC):
    """Peer-link primitive driven by ``Negotiation``.

    Descriptions are ``{"sdp", "type"}`` dicts and candidates are
    ``{"candidate", "sdpMid", "sdpMLineIndex"}`` dicts. Data channels follow
    the ``aiortc.RTCDataChannel`` shape (``on``, ``send``, ``close``,
    ``readyState``).

    Events:
        candidate(dict): a local candidate was discovered.
        icegatheringstatechange(str): local gathering state changed.
        datachannel(channel): the remote side opened a data channel.
    """

    @abstractmethod
    async def create_offer(self) -> dict:
        ...

    @abstractmethod
    async def create_answer(self) -> dict:
        ...

    @abstractmethod
    async def set_local_description(self, description: dict) -> None:
        ...

    @abstractmethod
    async def set_remote_description(self, description: dict) -> None:
        ...

    @abstractmethod
    async def add_candidate(self, candidate: dict) -> None:
        ...

    @abstractmethod
    def create_data_channel(self, label: str) -> Any:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    def local_description(self) -> Optional[dict]:
        """Local description including gathered candidates, if known."""
        return None


class NegotiationRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class NegotiationPhase(str, Enum):
    NEW = "new"
    OFFER_CREATED = "offer_created"
    OFFER_RECEIVED = "offer_received"
    ANSWER_CREATED = "answer_created"
    CANDIDATES_GATHERING = "candidates_gathering"
    OFFER_SENT = "offer_sent"
    ANSWER_SENT = "answer_sent"
    ANSWER_RECEIVED = "answer_received"
    CONNECTED = "connected"
    CLOSED = "closed"


# Called once with (local_description, local_candidates) when gathering ends.
SendDescription = Callable[[dict, List[dict]], None]


class Negotiation:
    """One side of a peer-link handshake.

    Attributes:
        capability: The negotiation capability being driven.
        role: Initiator (Host) or responder (Client).
        phase: Current ``NegotiationPhase``.
        local_description: Offer or answer created locally.
        remote_description: Offer or answer received from the other side.
        local_candidates: Candidates gathered locally, in discovery order.
        local_candidates_collected: Gathering completed (observed once).
        remote_candidates: Candidates received from the other side.
        remote_candidates_collected: Remote candidates were received.
    """

    def __init__(
        self,
        capability: NegotiationCapability,
        role: NegotiationRole,
        send: SendDescription,
        name: str = "",
    ):
        self.capability = capability
        self.role = role
        self.name = name
        self.phase = NegotiationPhase.NEW

        self.local_description: Optional[dict] = None
        self.remote_description: Optional[dict] = None
        self.local_candidates: List[dict] = []
        self.local_candidates_collected = False
        self.remote_candidates: List[dict] = []
        self.remote_candidates_collected = False

        self._send = send
        self._remote_applied = False
        self._buffered_remote: List[dict] = []

        capability.on("candidate", self._on_candidate)
        capability.on("icegatheringstatechange", self._on_gathering_state_change)

    @property
    def closed(self) -> bool:
        return self.phase == NegotiationPhase.CLOSED

    def open_channel(self, label: str):
        """Propose the data channel (initiator only, before ``start``)."""
        self._require(NegotiationRole.INITIATOR, "open_channel")
        return self.capability.create_data_channel(label)

    async def start(self) -> dict:
        """Initiator: create the offer and begin gathering.

        Returns:
            The local offer.
        """
        self._require(NegotiationRole.INITIATOR, "start")
        offer = await self.capability.create_offer()
        self.local_description = offer
        self._advance(NegotiationPhase.OFFER_CREATED)

        # Gathering may complete inside set_local_description.
        self._advance(NegotiationPhase.CANDIDATES_GATHERING)
        await self.capability.set_local_description(offer)
        return offer

    async def accept(self, offer: dict, candidates: Optional[List[dict]] = None) -> dict:
        """Responder: apply the offer, then answer and begin gathering.

        Returns:
            The local answer.
        """
        self._require(NegotiationRole.RESPONDER, "accept")
        self._advance(NegotiationPhase.OFFER_RECEIVED)
        await self._apply_remote(offer, candidates)

        answer = await self.capability.create_answer()
        self.local_description = answer
        self._advance(NegotiationPhase.ANSWER_CREATED)

        self._advance(NegotiationPhase.CANDIDATES_GATHERING)
        await self.capability.set_local_description(answer)
        return answer

    async def apply_answer(self, answer: dict, candidates: Optional[List[dict]] = None) -> None:
        """Initiator: apply the responder's answer and candidates."""
        self._require(NegotiationRole.INITIATOR, "apply_answer")
        self._advance(NegotiationPhase.ANSWER_RECEIVED)
        await self._apply_remote(answer, candidates)

    async def add_remote_candidate(self, candidate: dict) -> None:
        """Add a trickled remote candidate, buffering it until the remote
        description is applied."""
        self.remote_candidates.append(candidate)
        if not self._remote_applied:
            self._buffered_remote.append(candidate)
            return
        await self.capability.add_candidate(candidate)

    def mark_connected(self) -> None:
        self._advance(NegotiationPhase.CONNECTED)

    async def close(self) -> None:
        if self.closed:
            return
        self.phase = NegotiationPhase.CLOSED
        await self.capability.close()

    async def _apply_remote(self, description: dict, candidates: Optional[List[dict]]) -> None:
        self.remote_description = description
        self.remote_candidates.extend(candidates or [])
        self.remote_candidates_collected = True
        await self.capability.set_remote_description(description)
        self._remote_applied = True

        pending = list(candidates or []) + self._buffered_remote
        self._buffered_remote = []
        for candidate in pending:
            if candidate:
                await self.capability.add_candidate(candidate)

    def _on_candidate(self, candidate: Optional[dict]) -> None:
        # A null candidate marks the end of gathering.
        if candidate:
            self.local_candidates.append(candidate)

    def _on_gathering_state_change(self, state: str) -> None:
        if state != GATHERING_COMPLETE or self.closed:
            return
        if self.local_candidates_collected:
            logger.debug(f"Ignoring repeated gathering completion for {self.name}")
            return

        self.local_candidates_collected = True
        description = self.capability.local_description or self.local_description
        if self.role == NegotiationRole.INITIATOR:
            self._advance(NegotiationPhase.OFFER_SENT)
        else:
            self._advance(NegotiationPhase.ANSWER_SENT)
        logger.debug(
            f"Gathering complete for {self.name}: "
            f"sending {len(self.local_candidates)} candidate(s)"
        )
        self._send(description, list(self.local_candidates))

    def _advance(self, phase: NegotiationPhase) -> None:
        if self.closed:
            return
        self.phase = phase

    def _require(self, role: NegotiationRole, operation: str) -> None:
        if self.role != role:
            raise RuntimeError(f"{operation} is only valid for the {role.value} side")
