"""
Cloud peer store client.

Talks to the managed backend's REST surface (PostgREST dialect) for the
peers table. Keys are passed via configuration and never logged.
"""

import logging
from typing import Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..peers.models import PeerRecord

logger = logging.getLogger(__name__)


class CloudAPIError(Exception):
    """Raised when the cloud store returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CloudClient:
    """
    Client for the cloud peer store.

    Handles:
    - Authentication via API key and bearer token
    - Range-header pagination
    - Retry logic for transient failures on reads

    Usage:
        client = CloudClient(base_url="https://xyz.example.co", api_key="...")

        for peer in client.fetch_all():
            print(peer.name)
    """

    REST_PREFIX = "/rest/v1"
    PAGE_SIZE = 500

    # Fields the sync engine owns; created_at is assigned by the backend.
    WRITABLE_FIELDS = (
        "id",
        "name",
        "public_key",
        "private_key",
        "allowed_ips",
        "endpoint",
        "dns",
        "persistent_keepalive",
        "status",
        "last_handshake",
        "transfer_rx",
        "transfer_tx",
        "updated_at",
    )

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        peers_table: str = "wireguard_peers",
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize cloud client.

        Args:
            base_url: Backend project URL
            api_key: Project API key (never logged)
            access_token: User session token; the API key is used if absent
            peers_table: Name of the peers table
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
        """
        self.base_url = base_url.rstrip("/")
        self.peers_table = peers_table
        self.timeout = timeout

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            # Hand the final 5xx to raise_for_status so its body is kept
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)

        self._session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

        logger.info(f"Cloud client initialized for {self.base_url}")

    def __repr__(self) -> str:
        """Never expose keys in repr."""
        return f"CloudClient(base_url='{self.base_url}', peers_table='{self.peers_table}')"

    @property
    def is_configured(self) -> bool:
        """The cloud store has no local configuration gate."""
        return True

    @property
    def _table_url(self) -> str:
        return f"{self.base_url}{self.REST_PREFIX}/{self.peers_table}"

    def _make_request(
        self,
        method: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> requests.Response:
        """
        Make authenticated request against the peers table.

        Args:
            method: HTTP method
            params: Query parameters (PostgREST filters)
            data: JSON body
            headers: Extra headers for this request

        Returns:
            The successful response

        Raises:
            CloudAPIError: If the request fails
        """
        try:
            response = self._session.request(
                method=method,
                url=self._table_url,
                params=params,
                json=data,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response

        except requests.exceptions.HTTPError as e:
            error_msg = f"Cloud API error: {e}"
            try:
                error_body = e.response.json()
                if isinstance(error_body, dict) and error_body.get("message"):
                    error_msg = f"Cloud API error: {error_body['message']}"
            except (ValueError, AttributeError):
                pass

            logger.error(error_msg)
            raise CloudAPIError(
                error_msg,
                status_code=e.response.status_code if e.response is not None else None,
            ) from e

        except requests.exceptions.RequestException as e:
            error_msg = f"Cloud store unreachable: {e}"
            logger.error(error_msg)
            raise CloudAPIError(error_msg) from e

    def _paginate(self) -> Iterator[dict]:
        """
        Walk the peers table page by page.

        Uses Range headers; a page shorter than PAGE_SIZE is the last one.

        Yields:
            Individual JSON rows
        """
        start = 0

        while True:
            end = start + self.PAGE_SIZE - 1
            response = self._make_request(
                "GET",
                params={"select": "*", "order": "id"},
                headers={"Range-Unit": "items", "Range": f"{start}-{end}"},
            )

            try:
                rows = response.json()
            except ValueError as e:
                raise CloudAPIError(f"Cloud API returned invalid JSON: {e}") from e

            if not isinstance(rows, list):
                raise CloudAPIError("Cloud API returned a non-list peer set")

            yield from rows

            if len(rows) < self.PAGE_SIZE:
                break
            start += self.PAGE_SIZE

    def _writable_payload(self, peer: PeerRecord) -> dict:
        payload = peer.to_api_payload()
        return {k: v for k, v in payload.items() if k in self.WRITABLE_FIELDS}

    def fetch_all(self) -> list[PeerRecord]:
        """
        Fetch every peer in the cloud store.

        Returns:
            List of PeerRecord objects

        Raises:
            CloudAPIError: If the request fails or any row is malformed
        """
        logger.debug("Fetching cloud peers...")

        peers = []
        for row in self._paginate():
            try:
                peers.append(PeerRecord.from_api_response(row))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise CloudAPIError(f"Cloud API returned a malformed peer row: {e}") from e

        logger.info(f"Fetched {len(peers)} peers from cloud")
        return peers

    def create(self, peer: PeerRecord) -> None:
        """
        Insert a peer into the cloud store.

        Args:
            peer: Peer to insert, with its id already assigned
        """
        logger.info(f"Creating cloud peer: {peer.name} ({peer.id})")

        self._make_request(
            "POST",
            data=self._writable_payload(peer),
            headers={"Prefer": "return=minimal"},
        )

    def update(self, peer: PeerRecord) -> None:
        """
        Overwrite an existing cloud peer with the given version.

        Args:
            peer: Winning version of the peer
        """
        logger.info(f"Updating cloud peer: {peer.name} ({peer.id})")

        self._make_request(
            "PATCH",
            params={"id": f"eq.{peer.id}"},
            data=self._writable_payload(peer),
            headers={"Prefer": "return=minimal"},
        )

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Cloud client session closed")

    def __enter__(self) -> "CloudClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
