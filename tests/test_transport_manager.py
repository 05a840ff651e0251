import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import anyio

from human_mcp.config import HttpTransportConfig, StorageConfig, TransportConfig
from human_mcp.mcp_server import create_server
from human_mcp.server import main
from human_mcp.transports.manager import TransportManager


class TestTransportManager(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.server = MagicMock()
        self.server.run_stdio_async = AsyncMock()

    async def test_stdio_only(self):
        manager = TransportManager(self.server, TransportConfig(type="stdio"))
        with patch("human_mcp.transports.manager.HttpTransport") as http_cls:
            await manager.start()

        self.server.run_stdio_async.assert_awaited_once()
        http_cls.assert_not_called()
        self.assertIsNone(manager.http)

    async def test_http_only(self):
        http_config = HttpTransportConfig()
        manager = TransportManager(
            self.server,
            TransportConfig(type="http", http=http_config),
            StorageConfig(upload_temp_dir="/var/tmp/uploads"),
        )
        with patch("human_mcp.transports.manager.HttpTransport") as http_cls:
            http_cls.return_value.serve = AsyncMock()
            await manager.start()

        self.server.run_stdio_async.assert_not_awaited()
        args, kwargs = http_cls.call_args
        self.assertIs(args[0], self.server._mcp_server)
        self.assertIs(args[1], http_config)
        self.assertIsNone(kwargs["storage"])
        self.assertTrue(kwargs["networked"])
        self.assertEqual(kwargs["upload_temp_dir"], "/var/tmp/uploads")
        http_cls.return_value.serve.assert_awaited_once()

    async def test_both(self):
        manager = TransportManager(self.server, TransportConfig(type="both", http=HttpTransportConfig()))
        with patch("human_mcp.transports.manager.HttpTransport") as http_cls:
            http_cls.return_value.serve = AsyncMock()
            await manager.start()

        self.server.run_stdio_async.assert_awaited_once()
        http_cls.return_value.serve.assert_awaited_once()

    async def test_http_requires_configuration(self):
        with self.assertRaises(ValueError):
            TransportManager(self.server, TransportConfig(type="http"))

    async def test_stop_ends_running_transports(self):
        self.server.run_stdio_async = AsyncMock(side_effect=anyio.sleep_forever)
        manager = TransportManager(self.server, TransportConfig(type="both", http=HttpTransportConfig()))

        with patch("human_mcp.transports.manager.HttpTransport") as http_cls:
            http_cls.return_value.serve = AsyncMock()
            with anyio.fail_after(5):
                async with anyio.create_task_group() as tg:
                    tg.start_soon(manager.start)
                    await anyio.sleep(0.05)
                    manager.stop()

        http_cls.return_value.stop.assert_called_once()


class TestMain(unittest.TestCase):
    def test_keyboard_interrupt_exits_quietly(self):
        with patch("human_mcp.server.load_config") as load_config, patch(
            "human_mcp.server.configure_logging"
        ), patch("human_mcp.server.TransportManager") as manager_cls, patch(
            "human_mcp.server.anyio.run", side_effect=KeyboardInterrupt
        ) as run:
            load_config.return_value = MagicMock(log_level="info")
            main()

        run.assert_called_once_with(manager_cls.return_value.start)
        manager_cls.return_value.stop.assert_not_called()


class TestCreateServer(unittest.TestCase):
    def test_registrars_are_applied(self):
        seen = []
        mcp = create_server([seen.append])

        self.assertEqual(seen, [mcp])
        self.assertEqual(mcp.name, "human-mcp")


if __name__ == "__main__":
    unittest.main()
