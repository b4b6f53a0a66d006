import aiohttp
import pytest

from seopage_chat.services.search_gateway import SearchGateway
from seopage_chat.streaming.transport import AiohttpSocketFactory


@pytest.mark.asyncio
async def test_owned_session_is_created_lazily_and_closed():
    factory = AiohttpSocketFactory()
    assert factory.session is None

    session = await factory._ensure_session()
    assert await factory._ensure_session() is session

    await factory.close()
    assert session.closed
    assert factory.session is None


@pytest.mark.asyncio
async def test_borrowed_session_is_left_open():
    async with aiohttp.ClientSession() as shared:
        gateway = SearchGateway("http://search.test", session=shared)

        assert await gateway._ensure_session() is shared
        await gateway.close()

        assert not shared.closed


@pytest.mark.asyncio
async def test_gateway_session_sends_json_content_type():
    gateway = SearchGateway("http://search.test")
    session = await gateway._ensure_session()
    try:
        assert session.headers["Content-Type"] == "application/json"
    finally:
        await gateway.close()
