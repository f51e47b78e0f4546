import logging
from typing import Any, Dict, List, Optional

import requests

# Import the class symbol directly so tests can monkeypatch
from elasticsearch import Elasticsearch  # type: ignore

from cloner.errors import ItemNotifyError
from cloner.items import MediaItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def build_solr_update(item: MediaItem) -> List[Dict[str, Any]]:
    """Atomic-update payload pointing a post's image at its stored copy."""
    return [{"id": item.post_id, "post_image": {"set": item.storage_reference}}]


class SolrIndexNotifier:
    """Pushes partial document updates to Solr.

    Best-effort: failures are logged and swallowed, never retried, and never
    reach the caller as exceptions.
    """

    def __init__(self, index_base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.index_base_url = index_base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, item: MediaItem, index_base_url: Optional[str] = None) -> bool:
        try:
            self._post(item, (index_base_url or self.index_base_url).rstrip('/'))
        except ItemNotifyError as exc:
            logger.error(f"Search index update failed for post {item.post_id}: {exc}")
            return False
        logger.debug("Updated search index for post %s", item.post_id)
        return True

    def _post(self, item: MediaItem, base_url: str) -> None:
        url = f"{base_url}/update?commit=true"
        try:
            response = self.session.post(url, json=build_solr_update(item), timeout=self.timeout)
        except requests.RequestException as exc:
            raise ItemNotifyError(str(exc), item) from exc
        with response:
            if not response.ok:
                raise ItemNotifyError(f"HTTP {response.status_code} from {url}", item)


class ElasticsearchIndexNotifier:
    """Elasticsearch alternative to the Solr notifier.

    Same best-effort contract. The wrapper stays usable when the cluster is
    down at startup; callers can check ``.connected``.

    Parameters
    ----------
    hosts : list[str]
        Cluster URLs.
    index_name : str
        Index holding one document per post.
    es_client : Elasticsearch | None
        Pre-instantiated client (mainly for tests / dependency injection).
    """

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        index_name: str = "posts",
        timeout: float = DEFAULT_TIMEOUT,
        es_client: Optional[Elasticsearch] = None,
    ):
        self.hosts = hosts or ["http://localhost:9200"]
        self.index_name = index_name
        self.timeout = timeout
        self.es: Optional[Elasticsearch] = es_client
        self.connected: bool = False

        if self.es is None:
            self._connect()
        else:
            self.ping()

    def _connect(self) -> None:
        try:
            self.es = Elasticsearch(self.hosts, request_timeout=self.timeout)
            if self.es.ping():
                self.connected = True
                logger.info("Elasticsearch connected (hosts=%s)", self.hosts)
            else:
                raise ConnectionError("Ping to Elasticsearch failed")
        except Exception as exc:  # pragma: no cover (network/ES specific branches)
            self.es = None
            self.connected = False
            logger.error("Failed to connect to Elasticsearch: %s (%s)", exc, exc.__class__.__name__)

    def ping(self) -> bool:
        """Return True if cluster responds; updates connected flag."""
        if not self.es:
            return False
        try:
            self.connected = bool(self.es.ping())
        except Exception:
            self.connected = False
        return self.connected

    def notify(self, item: MediaItem, index_base_url: Optional[str] = None) -> bool:
        if not self.connected and not self.ping():
            # one reconnect attempt per notification, no retries beyond that
            self._connect()
        if not self.connected or not self.es:
            logger.error("Cannot update post %s: Not connected to Elasticsearch.", item.post_id)
            return False
        try:
            self.es.update(
                index=self.index_name,
                id=str(item.post_id),
                doc={"post_image": item.storage_reference},
            )
        except Exception as exc:
            logger.error("Failed to update post %s in index %s: %s", item.post_id, self.index_name, exc)
            return False
        logger.debug("Updated index=%s id=%s", self.index_name, item.post_id)
        return True

    def close(self) -> None:
        """Close underlying transport (best-effort)."""
        if self.es is not None:
            try:  # pragma: no cover (network specifics)
                self.es.close()
            except Exception as exc:
                logger.debug("Elasticsearch close failed: %s", exc)
        self.connected = False
