"""
Local agent HTTP client.

The on-premises agent exposes peer CRUD over plain HTTP(S), optionally
guarded by a shared secret sent in the ``x-server-token`` header.
"""

import logging
from typing import Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..peers.models import PeerRecord

logger = logging.getLogger(__name__)


class LocalAgentError(Exception):
    """Raised when the local agent returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LocalAgentNotConfiguredError(LocalAgentError):
    """Raised when no local agent base URL is configured."""
    pass


class LocalAgentClient:
    """
    Client for the local agent's peer endpoints.

    Endpoints:
    - GET  {base_url}/peers
    - POST {base_url}/peers
    - PUT  {base_url}/peers/{id}

    Usage:
        client = LocalAgentClient(base_url="http://10.0.0.1:8080", server_token="...")

        if client.is_configured:
            peers = client.fetch_all()
    """

    PEERS_ENDPOINT = "/peers"
    PEER_ENDPOINT = "/peers/{peer_id}"
    TOKEN_HEADER = "x-server-token"

    def __init__(
        self,
        base_url: Optional[str] = None,
        server_token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize local agent client.

        Args:
            base_url: Agent URL; empty or None means "not configured"
            server_token: Optional shared secret (never logged)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
        """
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT"],
            # Hand the final 5xx to raise_for_status so its body is kept
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if server_token:
            self._session.headers[self.TOKEN_HEADER] = server_token

        if self.is_configured:
            logger.info(f"Local agent client initialized for {self.base_url}")
        else:
            logger.info("Local agent not configured")

    def __repr__(self) -> str:
        """Never expose the shared secret in repr."""
        return f"LocalAgentClient(base_url='{self.base_url}')"

    @property
    def is_configured(self) -> bool:
        """Whether a base URL has been set."""
        return bool(self.base_url)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
    ) -> requests.Response:
        """
        Make a request to the local agent.

        Non-2xx responses become LocalAgentError with the response body as
        detail where available.

        Raises:
            LocalAgentNotConfiguredError: If no base URL is configured
            LocalAgentError: If the request fails
        """
        if not self.is_configured:
            raise LocalAgentNotConfiguredError("Local server not configured")

        url = f"{self.base_url}{endpoint}"

        try:
            response = self._session.request(
                method=method,
                url=url,
                json=data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response

        except requests.exceptions.HTTPError as e:
            error_msg = f"Local agent error: {e}"
            detail = e.response.text.strip() if e.response is not None else ""
            if detail:
                error_msg = f"Local agent error ({e.response.status_code}): {detail}"

            logger.error(error_msg)
            raise LocalAgentError(
                error_msg,
                status_code=e.response.status_code if e.response is not None else None,
            ) from e

        except requests.exceptions.RequestException as e:
            error_msg = f"Local agent unreachable: {e}"
            logger.error(error_msg)
            raise LocalAgentError(error_msg) from e

    def fetch_all(self) -> list[PeerRecord]:
        """
        Fetch every peer known to the local agent.

        Returns:
            List of PeerRecord objects

        Raises:
            LocalAgentError: If the request fails or any row is malformed
        """
        logger.debug("Fetching local peers...")

        response = self._make_request("GET", self.PEERS_ENDPOINT)

        try:
            rows = response.json()
        except ValueError as e:
            raise LocalAgentError(f"Local agent returned invalid JSON: {e}") from e

        if not isinstance(rows, list):
            raise LocalAgentError("Local agent returned a non-list peer set")

        peers = []
        for row in rows:
            try:
                peers.append(PeerRecord.from_api_response(row))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise LocalAgentError(f"Local agent returned a malformed peer row: {e}") from e

        logger.info(f"Fetched {len(peers)} peers from local agent")
        return peers

    def create(self, peer: PeerRecord) -> None:
        """
        Create a peer on the local agent.

        Args:
            peer: Peer to create, with its id already assigned
        """
        logger.info(f"Creating local peer: {peer.name} ({peer.id})")
        self._make_request("POST", self.PEERS_ENDPOINT, data=peer.to_api_payload())

    def update(self, peer: PeerRecord) -> None:
        """
        Overwrite an existing local peer with the given version.

        Args:
            peer: Winning version of the peer
        """
        logger.info(f"Updating local peer: {peer.name} ({peer.id})")

        endpoint = self.PEER_ENDPOINT.format(peer_id=quote(peer.id, safe=""))
        self._make_request("PUT", endpoint, data=peer.to_api_payload())

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Local agent client session closed")

    def __enter__(self) -> "LocalAgentClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
