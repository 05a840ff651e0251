"""End-to-end runs against the real SDK transports, over TestClient and a live uvicorn server."""

import asyncio
import socket
import unittest

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.server.fastmcp import Context
from starlette.testclient import TestClient

from fakes import INITIALIZE
from human_mcp.config import HttpTransportConfig
from human_mcp.mcp_server import create_server
from human_mcp.transports.http.server import HttpTransport, create_app

ACCEPT = {"Accept": "application/json, text/event-stream"}


def register_tools(mcp):
    @mcp.tool()
    async def whoami(ctx: Context) -> str:
        """Echo the x-trace header of the HTTP request that carried this call."""
        request = ctx.request_context.request
        if request is None:
            return "none"
        return request.headers.get("x-trace", "none")


def low_level_server():
    return create_server([register_tools])._mcp_server


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestStreamableHttpWithSdkTransport(unittest.TestCase):
    def test_stateful_lifecycle(self):
        app = create_app(low_level_server(), HttpTransportConfig())
        manager = app.state.session_manager

        with TestClient(app) as client:
            init = client.post("/mcp", json=INITIALIZE, headers=ACCEPT)
            self.assertEqual(init.status_code, 200)
            self.assertEqual(init.json()["id"], 1)
            session_id = init.headers["mcp-session-id"]
            self.assertTrue(manager.has_session(session_id))

            headers = {
                **ACCEPT,
                "Mcp-Session-Id": session_id,
                "Mcp-Protocol-Version": init.json()["result"]["protocolVersion"],
            }
            initialized = client.post(
                "/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"}, headers=headers
            )
            self.assertEqual(initialized.status_code, 202)

            tools = client.post("/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, headers=headers)
            self.assertEqual(tools.status_code, 200)
            self.assertIn("whoami", [tool["name"] for tool in tools.json()["result"]["tools"]])

            deleted = client.delete("/mcp", headers={"Mcp-Session-Id": session_id})
            self.assertEqual(deleted.status_code, 204)
            self.assertFalse(manager.has_session(session_id))

            after = client.post("/mcp", json={"jsonrpc": "2.0", "id": 3, "method": "tools/list"}, headers=headers)
            self.assertEqual(after.status_code, 400)

    def test_stateless_post(self):
        app = create_app(low_level_server(), HttpTransportConfig(session_mode="stateless"))

        with TestClient(app) as client:
            response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 5, "method": "tools/list"}, headers=ACCEPT)

            self.assertEqual(response.status_code, 200)
            self.assertNotIn("mcp-session-id", response.headers)
            self.assertEqual(response.json()["id"], 5)
            self.assertIn("whoami", [tool["name"] for tool in response.json()["result"]["tools"]])
            self.assertEqual(app.state.session_manager.get_session_count(), 0)


class LiveServerTestCase(unittest.IsolatedAsyncioTestCase):
    session_mode = "stateful"

    async def asyncSetUp(self):
        self.port = free_port()
        config = HttpTransportConfig(
            host="127.0.0.1", port=self.port, session_mode=self.session_mode, enable_sse_fallback=True
        )
        self.transport = HttpTransport(low_level_server(), config)
        self.serve_task = asyncio.create_task(self.transport.serve())
        for _ in range(500):
            server = self.transport._server
            if server is not None and server.started:
                break
            await asyncio.sleep(0.01)
        else:
            self.fail("HTTP server did not start")
        self.base_url = f"http://127.0.0.1:{self.port}"

    async def asyncTearDown(self):
        self.transport.stop()
        await asyncio.wait_for(self.serve_task, 10)

    async def wait_for_session_count(self, expected):
        manager = self.transport.app.state.session_manager
        for _ in range(100):
            if manager.get_session_count() == expected:
                return
            await asyncio.sleep(0.02)
        self.assertEqual(manager.get_session_count(), expected)


class TestLiveStreamableHttp(LiveServerTestCase):
    async def test_tool_sees_request_headers(self):
        async with streamablehttp_client(f"{self.base_url}/mcp", headers={"x-trace": "streamable"}) as (
            read,
            write,
            get_session_id,
        ):
            async with ClientSession(read, write) as session:
                await session.initialize()
                self.assertIsNotNone(get_session_id())
                result = await session.call_tool("whoami", {})
                self.assertEqual(result.content[0].text, "streamable")

        await self.wait_for_session_count(0)


class TestLiveStatelessStreamableHttp(LiveServerTestCase):
    session_mode = "stateless"

    async def test_no_session_id_is_issued(self):
        async with streamablehttp_client(f"{self.base_url}/mcp") as (read, write, get_session_id):
            async with ClientSession(read, write) as session:
                await session.initialize()
                tools = await session.list_tools()
                self.assertIn("whoami", [tool.name for tool in tools.tools])
                self.assertIsNone(get_session_id())

        self.assertEqual(self.transport.app.state.session_manager.get_session_count(), 0)


class TestLiveSse(LiveServerTestCase):
    async def test_round_trip_carries_request_context(self):
        sse_sessions = self.transport.app.state.sse_manager

        async with sse_client(f"{self.base_url}/sse", headers={"x-trace": "sse"}) as (read, write):
            async with ClientSession(read, write) as session:
                await session.initialize()
                self.assertEqual(sse_sessions.get_session_count(), 1)

                tools = await session.list_tools()
                self.assertIn("whoami", [tool.name for tool in tools.tools])

                result = await session.call_tool("whoami", {})
                self.assertEqual(result.content[0].text, "sse")

        for _ in range(100):
            if sse_sessions.get_session_count() == 0:
                break
            await asyncio.sleep(0.02)
        self.assertEqual(sse_sessions.get_session_count(), 0)


if __name__ == "__main__":
    unittest.main()
