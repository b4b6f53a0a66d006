"""Command-line runner: start a flow and print frames as JSON lines."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, TextIO

from .config import settings
from .exceptions import FlowError
from .models.flow import FlowMode, FlowState
from .models.frames import ChatFrame, FrameType
from .services.domain_processor import DomainProcessor
from .services.orchestrator import FlowOrchestrator, token_from_store
from .services.search_gateway import SearchGateway
from .storage.kv_store import InMemoryStore, KeyValueStore, RedisStore
from .streaming.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="seopage-chat", description=settings.APP_NAME)
    parser.add_argument("domain", help="Domain or URL to analyze")
    parser.add_argument("conversation_id", help="Conversation id to stream")
    parser.add_argument("--token", help="Bearer token (defaults to the stored access token)")
    parser.add_argument("--no-search", action="store_true", help="Skip competitor search and connect directly")
    parser.add_argument("--log-level", default=None)
    return parser


def open_store() -> KeyValueStore:
    if settings.REDIS_URL:
        return RedisStore.from_url(settings.REDIS_URL, prefix=settings.STORE_PREFIX)
    return InMemoryStore()


def frame_line(frame: ChatFrame) -> str:
    return json.dumps({"title": frame.display_title(), **frame.raw}, ensure_ascii=False, default=str)


async def run(args: argparse.Namespace, store: KeyValueStore, out: TextIO = sys.stdout) -> int:
    if args.token:
        store.set(settings.ACCESS_TOKEN_KEY, args.token)

    finished = asyncio.Event()
    failure: List[BaseException] = []

    def on_frame(frame: ChatFrame) -> None:
        out.write(frame_line(frame) + "\n")
        out.flush()
        if frame.type is FrameType.CODES:
            finished.set()

    def on_error(error: BaseException) -> None:
        logger.error(f"Stream error: {error}")
        if orchestrator.state is FlowState.FAILED:
            failure.append(error)
            finished.set()

    def on_close(code: int) -> None:
        if orchestrator.state is FlowState.IDLE:
            logger.info(f"Server ended the conversation ({code})")
            finished.set()

    def on_reconnecting(attempt: int, delay_ms: int) -> None:
        logger.warning(f"Reconnecting (attempt {attempt}) in {delay_ms}ms")

    gateway = SearchGateway(
        settings.API_BASE_URL,
        token_provider=token_from_store(store),
        timeout=settings.SEARCH_TIMEOUT_SECONDS,
    )
    manager = ConnectionManager(store=store)
    orchestrator = FlowOrchestrator(
        manager,
        token_provider=token_from_store(store),
        domain_processor=DomainProcessor(
            store, settings.LAST_DOMAIN_KEY, settings.LAST_DOMAIN_INPUT_KEY
        ),
        search_gateway=gateway,
        mode=FlowMode.CONNECT_ONLY if args.no_search else FlowMode.SEARCH_THEN_CONNECT,
        on_frame=on_frame,
        on_error=on_error,
        on_close=on_close,
        on_reconnecting=on_reconnecting,
    )

    try:
        result = await orchestrator.start(args.domain, args.conversation_id)
        if result.search_result is not None:
            logger.info(f"Competitors: {', '.join(result.search_result.competitors) or '-'}")
        await finished.wait()
    except FlowError as e:
        logger.error(str(e))
        return 1
    finally:
        await orchestrator.reset()
        await manager.close()
        await gateway.close()

    return 1 if failure else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return asyncio.run(run(args, open_store()))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
