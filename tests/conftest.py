"""Shared fakes for session tests.

The fakes stand in for the relay transport and the negotiation capability
so Host and Client sessions can be driven deterministically on one event
loop, without a relay or a network.
"""

import asyncio

import pytest
from pyee import EventEmitter
from pyee.asyncio import AsyncIOEventEmitter

from highnoon_rtc.config import SessionOptions
from highnoon_rtc.negotiation import GATHERING_COMPLETE, NegotiationCapability
from highnoon_rtc.protocol import EVT_DISCONNECT, EVT_GET_TURN_AUTH, EVT_TURN_AUTH


# ── relay transport ──────────────────────────────────────────────────────────


class FakeTransport:
    """In-memory relay transport.

    ``responders`` maps an outgoing event to a callable returning the
    ``(event, data)`` replies the relay would send back. Replies are
    delivered on the next loop iteration.
    """

    def __init__(self, url, project_id, api_token, role, identity, fail_with=None):
        self.url = url
        self.project_id = project_id
        self.api_token = api_token
        self.role = role
        self.identity = identity
        self.fail_with = fail_with
        self.sent = []
        self.responders = {}
        self.connect_calls = 0
        self._connected = False
        self._events = AsyncIOEventEmitter()

    @property
    def connected(self):
        return self._connected

    async def connect(self):
        self.connect_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self._connected = True

    def on(self, event, handler):
        self._events.on(event, handler)

    def off(self, event, handler=None):
        if handler is None:
            self._events.remove_all_listeners(event)
            return
        try:
            self._events.remove_listener(event, handler)
        except KeyError:
            pass

    def emit(self, event, data=None):
        self.sent.append((event, data))
        responder = self.responders.get(event)
        if responder is None:
            return
        loop = asyncio.get_running_loop()
        for reply_event, reply_data in responder(data):
            loop.call_soon(self.deliver, reply_event, reply_data)

    def deliver(self, event, data=None):
        """Simulate a frame arriving from the relay."""
        self._events.emit(event, data)

    def drop(self):
        """Simulate the relay connection being lost for good."""
        self._connected = False
        self.deliver(EVT_DISCONNECT)

    def sent_events(self, event):
        return [data for name, data in self.sent if name == event]

    def listener_count(self, event):
        return len(self._events.listeners(event))

    async def close(self):
        self._connected = False


class FakeTransportFactory:
    """Transport factory recording every transport it builds."""

    def __init__(self, fail_with=None, turn_servers=None):
        self.fail_with = fail_with
        self.turn_servers = turn_servers
        self.created = []

    def __call__(self, url, project_id, api_token, role, identity):
        transport = FakeTransport(
            url, project_id, api_token, role, identity, fail_with=self.fail_with
        )
        if self.turn_servers is not None:
            servers = self.turn_servers
            transport.responders[EVT_GET_TURN_AUTH] = lambda data: [
                (EVT_TURN_AUTH, servers)
            ]
        self.created.append(transport)
        return transport


# ── negotiation capability ───────────────────────────────────────────────────


class FakeChannel(EventEmitter):
    """Data channel with the aiortc RTCDataChannel surface."""

    def __init__(self, label, ready_state="connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent = []

    def send(self, message):
        self.sent.append(message)

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def receive(self, message):
        self.emit("message", message)

    def close(self):
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")


DEFAULT_CANDIDATE = {
    "candidate": "candidate:1 1 udp 2130706431 192.0.2.1 50000 typ host",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


class FakeCapability(NegotiationCapability):
    """Negotiation capability completing gathering synchronously."""

    def __init__(self, ice_servers=None, candidates=None, auto_complete=True):
        super().__init__()
        self.ice_servers = ice_servers
        self.candidates = [DEFAULT_CANDIDATE] if candidates is None else candidates
        self.auto_complete = auto_complete
        self.local = None
        self.remote = None
        self.added_candidates = []
        self.channels = []
        self.closed = False

    @property
    def local_description(self):
        return self.local

    async def create_offer(self):
        return {"sdp": "v=0 fake-offer", "type": "offer"}

    async def create_answer(self):
        return {"sdp": "v=0 fake-answer", "type": "answer"}

    async def set_local_description(self, description):
        self.local = description
        if self.auto_complete:
            self.finish_gathering()

    def finish_gathering(self):
        for candidate in self.candidates:
            self.emit("candidate", candidate)
        self.emit("icegatheringstatechange", GATHERING_COMPLETE)

    async def set_remote_description(self, description):
        self.remote = description

    async def add_candidate(self, candidate):
        self.added_candidates.append(candidate)

    def create_data_channel(self, label):
        channel = FakeChannel(label)
        self.channels.append(channel)
        return channel

    async def close(self):
        self.closed = True


class FakeCapabilityFactory:
    """Capability factory recording every capability it builds."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created = []

    def __call__(self, ice_servers=None):
        capability = FakeCapability(ice_servers, **self.kwargs)
        self.created.append(capability)
        return capability


# ── fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def options():
    return SessionOptions(
        project_id="proj-test",
        api_token="token-test",
        channel_name="test",
        signalling_override="wss://relay.test",
        request_timeout=0.05,
    )


@pytest.fixture
def transports():
    return FakeTransportFactory(turn_servers=[])


@pytest.fixture
def capabilities():
    return FakeCapabilityFactory()


@pytest.fixture
def settle():
    """Let scheduled callbacks and handler tasks run."""

    async def _settle(rounds=10):
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def recorder():
    """Callable recording ``(event, payload)`` pairs for bus subscriptions."""

    class Recorder:
        def __init__(self):
            self.events = []

        def listen(self, session, event):
            session.on(event, lambda payload: self.events.append((event, payload)))

        def of(self, event):
            return [payload for name, payload in self.events if name == event]

    return Recorder()
