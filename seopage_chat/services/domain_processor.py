import re
import logging
from typing import Optional
from urllib.parse import urlsplit

from ..exceptions import InvalidDomainError
from ..storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_DIGITS = re.compile(r"^\d+$")
_LABEL = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


class DomainProcessor:
    """Turns free-text domain or URL input into a canonical hostname.

    On success the hostname and the raw input are written to ``store`` so a
    caller can resume after a restart. Without a store nothing is persisted.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        domain_key: str = "last_domain",
        input_key: str = "last_domain_input",
    ):
        self.store = store
        self.domain_key = domain_key
        self.input_key = input_key

    def normalize(self, raw: str) -> str:
        hostname = self._extract_hostname(raw)

        if self.store is not None:
            self.store.set(self.domain_key, hostname)
            self.store.set(self.input_key, raw)

        logger.info(f"Normalized domain {raw!r} -> {hostname}")
        return hostname

    def is_valid(self, raw: str) -> bool:
        try:
            self._extract_hostname(raw)
        except InvalidDomainError:
            return False
        return True

    def _extract_hostname(self, raw: str) -> str:
        if raw is None or not str(raw).strip():
            raise InvalidDomainError(raw or "", "Domain cannot be empty")

        candidate = str(raw).strip()
        if _DIGITS.match(candidate):
            raise InvalidDomainError(raw, "Domain cannot be purely numeric")

        if not _SCHEME.match(candidate):
            candidate = "https://" + candidate

        try:
            hostname = urlsplit(candidate).hostname
        except ValueError as e:
            raise InvalidDomainError(raw, f"Unparseable URL ({e})") from e

        if not hostname or "." not in hostname:
            raise InvalidDomainError(raw, "Domain must contain at least one dot")

        labels = hostname.split(".")
        if not all(_LABEL.match(label) for label in labels):
            raise InvalidDomainError(raw)

        return hostname.lower()
