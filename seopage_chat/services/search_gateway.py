"""HTTP gateway for the competitor discovery endpoint."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..models.search import (
    CODE_NETWORK_ERROR,
    CODE_SUBSCRIPTION_REQUIRED,
    CODE_SUCCESS,
    CODE_TASK_IN_PROGRESS,
    CompetitorSearchResult,
    SearchOutcome,
)
from ..monitoring import metrics
from ..streaming.transport import ClientSessionOwner

logger = logging.getLogger(__name__)

SEARCH_PATH = "/alternatively/search"

MESSAGES = {
    SearchOutcome.TASK_IN_PROGRESS: "There is a task in progress. Please select from the left chat list",
    SearchOutcome.NETWORK_ERROR: "Encountered a network error. Please try again.",
    SearchOutcome.SUBSCRIPTION_REQUIRED: "Please subscribe before starting a task.",
    SearchOutcome.UNAUTHORIZED: "Your session has expired. Please log in again.",
    SearchOutcome.FAILED: "Competitor search failed",
}

_CODE_OUTCOMES = {
    CODE_TASK_IN_PROGRESS: SearchOutcome.TASK_IN_PROGRESS,
    CODE_SUBSCRIPTION_REQUIRED: SearchOutcome.SUBSCRIPTION_REQUIRED,
    CODE_NETWORK_ERROR: SearchOutcome.NETWORK_ERROR,
}


class SearchGateway(ClientSessionOwner):
    """Starts competitor discovery for a (conversation, domain) pair.

    Exactly one request per call. Retrying is left to the caller; a
    ``NETWORK_ERROR`` outcome is the only one that is safe to repeat.
    """

    session_headers = {"Content-Type": "application/json"}

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = 300.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        super().__init__(session)

    def _headers(self) -> Dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def search(self, conversation_id: str, domain: str) -> CompetitorSearchResult:
        session = await self._ensure_session()
        payload = {"conversationId": conversation_id, "website": domain}
        start_time = time.time()

        logger.info(f"Searching competitors for {domain} (conversation {conversation_id})")

        try:
            async with session.post(
                f"{self.base_url}{SEARCH_PATH}",
                json=payload,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status == 401:
                    result = self._failure(SearchOutcome.UNAUTHORIZED)
                elif response.status >= 400:
                    logger.error(f"Search API HTTP error: {response.status}")
                    result = self._failure(SearchOutcome.FAILED)
                else:
                    body = await response.json(content_type=None)
                    result = self._from_body(body)
        except asyncio.TimeoutError:
            logger.error(f"Search timed out after {self.timeout}s for {domain}")
            result = self._failure(SearchOutcome.NETWORK_ERROR)
        except aiohttp.ClientError as e:
            logger.error(f"Search request failed for {domain}: {e}")
            result = self._failure(SearchOutcome.NETWORK_ERROR)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError both land here
            logger.error(f"Search response was not JSON: {e}")
            result = self._failure(SearchOutcome.FAILED)

        metrics.search_requests.labels(outcome=result.outcome.value).inc()
        metrics.search_latency.observe(time.time() - start_time)
        return result

    def _from_body(self, body: Any) -> CompetitorSearchResult:
        if not isinstance(body, dict):
            return self._failure(SearchOutcome.FAILED)

        code = body.get("code")
        if code == CODE_SUCCESS:
            data = body.get("data") or {}
            if not isinstance(data, dict):
                logger.error(f"Search response data is not an object: {type(data).__name__}")
                return self._failure(SearchOutcome.FAILED, code)
            names = data.get("competitors") or []
            if not isinstance(names, list):
                logger.error(f"Search response competitors is not a list: {type(names).__name__}")
                return self._failure(SearchOutcome.FAILED, code)
            competitors = tuple(str(c) for c in names)
            website_id = data.get("websiteId")
            logger.info(f"Found {len(competitors)} competitors, websiteId={website_id}")
            return CompetitorSearchResult(
                success=True,
                outcome=SearchOutcome.SUCCESS,
                competitors=competitors,
                website_id=str(website_id) if website_id is not None else None,
            )

        outcome = _CODE_OUTCOMES.get(code, SearchOutcome.FAILED)
        logger.warning(f"Search rejected with code {code} ({outcome.value})")
        return self._failure(outcome, code if isinstance(code, int) else None)

    @staticmethod
    def _failure(outcome: SearchOutcome, code: Optional[int] = None) -> CompetitorSearchResult:
        return CompetitorSearchResult(
            success=False,
            outcome=outcome,
            error_code=code,
            error=MESSAGES[outcome],
        )

