"""aiortc-backed negotiation capability.

aiortc gathers every candidate while ``setLocalDescription`` runs and embeds
them in the local SDP instead of trickling them. This adapter reports those
candidates and the "complete" gathering state once the local description is
in place, which is what ``Negotiation`` waits for.
"""

import logging
from typing import List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from highnoon_rtc.negotiation import GATHERING_COMPLETE, NegotiationCapability

logger = logging.getLogger(__name__)

ICE_SERVER_FIELDS = ("urls", "username", "credential")


def candidates_from_sdp(sdp: str) -> List[dict]:
    """Extract ``a=candidate`` lines from an SDP blob.

    Args:
        sdp: Session description text.

    Returns:
        Candidate dicts with ``sdpMid`` and ``sdpMLineIndex`` filled in.
    """
    sections = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append({"mid": None, "candidates": []})
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1]["mid"] = line[len("a=mid:") :]
        elif line.startswith("a=candidate:"):
            sections[-1]["candidates"].append(line[len("a=") :])

    candidates = []
    for index, section in enumerate(sections):
        for candidate in section["candidates"]:
            candidates.append(
                {
                    "candidate": candidate,
                    "sdpMid": section["mid"],
                    "sdpMLineIndex": index,
                }
            )
    return candidates


def build_configuration(ice_servers: Optional[List[dict]]) -> Optional[RTCConfiguration]:
    """Create an ``RTCConfiguration`` from ICE server hint dicts."""
    if not ice_servers:
        return None
    servers = []
    for server in ice_servers:
        fields = {k: server[k] for k in ICE_SERVER_FIELDS if k in server}
        if "urls" not in fields:
            logger.warning(f"Skipping ICE server without urls: {server}")
            continue
        servers.append(RTCIceServer(**fields))
    return RTCConfiguration(iceServers=servers)


def _to_dict(description: Optional[RTCSessionDescription]) -> Optional[dict]:
    if description is None:
        return None
    return {"sdp": description.sdp, "type": description.type}


class AiortcCapability(NegotiationCapability):
    """``NegotiationCapability`` over ``aiortc.RTCPeerConnection``."""

    def __init__(self, ice_servers: Optional[List[dict]] = None):
        super().__init__()
        configuration = build_configuration(ice_servers)
        self.pc = RTCPeerConnection(configuration=configuration)
        self._remote_candidates: set = set()

        @self.pc.on("datachannel")
        def on_datachannel(channel):
            logger.info(f"Received data channel: {channel.label}")
            self.emit("datachannel", channel)

        @self.pc.on("iceconnectionstatechange")
        def on_ice_state_change():
            logger.info(f"ICE connection state is now {self.pc.iceConnectionState}")

    @property
    def local_description(self) -> Optional[dict]:
        return _to_dict(self.pc.localDescription)

    async def create_offer(self) -> dict:
        return _to_dict(await self.pc.createOffer())

    async def create_answer(self) -> dict:
        return _to_dict(await self.pc.createAnswer())

    async def set_local_description(self, description: dict) -> None:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        if self.pc.iceGatheringState == GATHERING_COMPLETE:
            for candidate in candidates_from_sdp(self.pc.localDescription.sdp):
                self.emit("candidate", candidate)
            self.emit("icegatheringstatechange", GATHERING_COMPLETE)

    async def set_remote_description(self, description: dict) -> None:
        for candidate in candidates_from_sdp(description["sdp"]):
            self._remote_candidates.add(candidate["candidate"])
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_candidate(self, candidate: dict) -> None:
        text = candidate.get("candidate", "")
        if not text or text in self._remote_candidates:
            # Already applied through the remote SDP.
            return
        self._remote_candidates.add(text)

        ice_candidate = candidate_from_sdp(text.split(":", 1)[1])
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice_candidate)

    def create_data_channel(self, label: str):
        return self.pc.createDataChannel(label)

    async def close(self) -> None:
        await self.pc.close()
