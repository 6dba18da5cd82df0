"""Tests for SessionCore: relay lifecycle and request correlation."""

import pytest
import pytest_asyncio

from highnoon_rtc.core.session import SessionCore
from highnoon_rtc.exceptions import (
    RelayAuthenticationError,
    RelayConnectionError,
    RelayTimeoutError,
)
from highnoon_rtc.protocol import (
    ERR_AUTHENTICATION,
    ERR_CONNECT_TIMEOUT,
    ERR_CONNECTION,
    ERR_TIMEOUT,
    EVT_GET_TURN_AUTH,
    ON_RELAY_DISCONNECTED,
    HNResponse,
)

from conftest import FakeTransportFactory

TURN = {"urls": "turn:turn.test:3478", "username": "u", "credential": "c"}


@pytest_asyncio.fixture
async def core(options, transports):
    core = SessionCore(options, "host", transports)
    response = await core.initialize("server")
    assert response.ok
    return core


class TestInitialize:
    """initialize() outcomes."""

    @pytest.mark.asyncio
    async def test_transport_is_built_from_options(self, options, transports):
        core = SessionCore(options, "client", transports)

        await core.initialize("alice-1234")

        transport = transports.created[0]
        assert transport.url == "wss://relay.test"
        assert transport.project_id == "proj-test"
        assert transport.api_token == "token-test"
        assert transport.role == "client"
        assert transport.identity == "alice-1234"
        assert transport.sent_events(EVT_GET_TURN_AUTH) == [None]

    @pytest.mark.asyncio
    async def test_authentication_error(self, options):
        factory = FakeTransportFactory(fail_with=RelayAuthenticationError("401"))
        core = SessionCore(options, "host", factory)

        response = await core.initialize()

        assert response.error == ERR_AUTHENTICATION

    @pytest.mark.asyncio
    async def test_connection_error(self, options):
        factory = FakeTransportFactory(fail_with=RelayConnectionError("refused"))
        core = SessionCore(options, "host", factory)

        response = await core.initialize()

        assert response.error == ERR_CONNECTION

    @pytest.mark.asyncio
    async def test_connect_timeout(self, options):
        factory = FakeTransportFactory(fail_with=RelayTimeoutError("no answer"))
        core = SessionCore(options, "host", factory)

        response = await core.initialize()

        assert response.error == ERR_CONNECT_TIMEOUT
        assert not core.initialized

    @pytest.mark.asyncio
    async def test_ice_hints_are_appended(self, options):
        core = SessionCore(options, "host", FakeTransportFactory(turn_servers=[TURN]))

        await core.initialize()

        assert core.ice_servers == options.ice_servers + [TURN]
        assert TURN not in options.ice_servers

    @pytest.mark.asyncio
    async def test_single_ice_hint_object(self, options):
        core = SessionCore(options, "host", FakeTransportFactory(turn_servers=TURN))

        await core.initialize()

        assert core.ice_servers[-1] == TURN

    @pytest.mark.asyncio
    async def test_missing_ice_hints_still_connects(self, options):
        """No turn_auth reply only delays initialization."""
        core = SessionCore(options, "host", FakeTransportFactory())

        response = await core.initialize()

        assert response.ok
        assert core.ice_servers == options.ice_servers

    @pytest.mark.asyncio
    async def test_second_initialize_does_not_reconnect(self, core):
        response = await core.initialize("server")

        assert response.ok
        assert core.transport.connect_calls == 1


class TestRequest:
    """request() correlation."""

    @pytest.mark.asyncio
    async def test_first_outcome_wins(self, core):
        core.transport.responders["ping"] = lambda data: [("b", 2), ("a", 1)]

        response = await core.request(
            "ping", None, {"a": lambda d: "got a", "b": lambda d: "got b"}
        )

        assert response.data == "got b"
        assert core.transport.listener_count("a") == 0
        assert core.transport.listener_count("b") == 0

    @pytest.mark.asyncio
    async def test_mapper_can_return_failure(self, core):
        core.transport.responders["ping"] = lambda data: [("nope", None)]

        response = await core.request(
            "ping", None, {"nope": lambda d: HNResponse.failure("denied")}
        )

        assert response.error == "denied"

    @pytest.mark.asyncio
    async def test_malformed_response(self, core):
        core.transport.responders["ping"] = lambda data: [("a", {})]

        response = await core.request("ping", None, {"a": lambda d: d["missing"]})

        assert response.error == "Malformed a response"

    @pytest.mark.asyncio
    async def test_timeout(self, core):
        response = await core.request("ping", {"x": 1}, {"a": lambda d: d})

        assert response.error == ERR_TIMEOUT
        assert core.transport.sent_events("ping") == [{"x": 1}]
        assert core.transport.listener_count("a") == 0


class TestRelayHandlers:
    """attach() and domain events."""

    @pytest.mark.asyncio
    async def test_attach_replaces_handler(self, core):
        calls = []
        core.attach("evt", lambda d: calls.append(("first", d)))
        core.attach("evt", lambda d: calls.append(("second", d)))

        core.transport.deliver("evt", 1)

        assert calls == [("second", 1)]

    @pytest.mark.asyncio
    async def test_close_resets_state(self, core):
        core.connected_to_room = True

        await core.close()

        assert not core.transport.connected
        assert not core.connected_to_room
        assert not core.initialized

    def test_debug_promoted_when_enabled(self, options, caplog):
        from dataclasses import replace

        core = SessionCore(replace(options, show_debug=True), "host")

        with caplog.at_level("INFO", logger="highnoon_rtc.core.session"):
            core.debug("diagnostic line")

        assert "diagnostic line" in caplog.text

    def test_debug_hidden_by_default(self, options, caplog):
        core = SessionCore(options, "host")

        with caplog.at_level("INFO", logger="highnoon_rtc.core.session"):
            core.debug("diagnostic line")

        assert "diagnostic line" not in caplog.text


class TestRelayLoss:
    """Transport lifecycle events."""

    @pytest.mark.asyncio
    async def test_lost_relay_resets_state(self, core):
        published = []
        core.subscribe(ON_RELAY_DISCONNECTED, published.append)
        core.initialized = True
        core.connected_to_room = True
        core.current_room = "room-1"

        core.transport.drop()

        assert not core.initialized
        assert not core.connected_to_room
        assert core.current_room is None
        assert published == [{"roomId": "room-1"}]

    @pytest.mark.asyncio
    async def test_reinitialize_after_loss(self, options):
        core = SessionCore(options, "host", FakeTransportFactory(turn_servers=[TURN]))
        await core.initialize()
        core.transport.drop()

        response = await core.initialize()

        assert response.ok
        assert core.transport.connect_calls == 2
        assert core.ice_servers.count(TURN) == 1
