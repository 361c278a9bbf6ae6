"""Tests for notifier lifecycle."""

import httpx
import pytest

from quikpik.application.notifications import (
    HttpNotifier,
    LoggingNotifier,
    close_notifier,
    get_notifier,
    set_notifier,
)


class TestCloseNotifier:
    """Tests for releasing the configured notifier."""

    @pytest.mark.asyncio
    async def test_closes_http_client(self) -> None:
        """The HTTP notifier's client is closed and the notifier dropped."""
        client = httpx.AsyncClient()
        notifier = HttpNotifier("http://relay.test/email", None, client=client)
        set_notifier(notifier)

        await close_notifier()

        assert client.is_closed
        assert notifier._client is None
        set_notifier(None)

    @pytest.mark.asyncio
    async def test_other_notifiers_dropped(self) -> None:
        """Notifiers without a client are simply forgotten."""
        logging_notifier = LoggingNotifier()
        set_notifier(logging_notifier)

        await close_notifier()

        assert get_notifier() is not logging_notifier
        set_notifier(None)
