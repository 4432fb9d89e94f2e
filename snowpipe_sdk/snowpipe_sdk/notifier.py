"""
Snowpipe insertFiles notification.

POST https://{account}.{host}/v1/data/pipes/{db}.{schema}.{pipe}/insertFiles?requestId={uuid}
    Authorization: Bearer <jwt>
    {"files": [{"path": "<staged path>", "size": <bytes>}]}

Every call gets a new requestId. The remote side deduplicates on it, so
it is never shared between two uploads.
"""

import logging
import uuid
from typing import Any, Dict, Optional, Union

import requests

from .signer import SignedToken

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_HOST = "snowflakecomputing.com"


class NotificationError(Exception):
    """Raised when the ingest endpoint does not accept a notification.

    The file has already been staged when this is raised.

    Attributes:
        remote_path: Staged path that was being announced.
        status_code: HTTP status, or None if no response was received.
        request_id: The requestId sent with the call.
    """

    def __init__(
        self,
        remote_path: str,
        status_code: Optional[int],
        request_id: str,
        detail: str = "",
    ):
        self.remote_path = remote_path
        self.status_code = status_code
        self.request_id = request_id
        status = f"HTTP {status_code}" if status_code is not None else "no response"
        super().__init__(
            f"insertFiles notification failed for {remote_path} ({status}, "
            f"requestId={request_id})" + (f": {detail}" if detail else "")
        )


def build_insert_files_url(
    account: str,
    database: str,
    schema: str,
    pipe: str,
    request_id: str,
    cloud_host: str = DEFAULT_CLOUD_HOST,
) -> str:
    """Build the insertFiles endpoint URL for a pipe."""
    return (
        f"https://{account}.{cloud_host}/v1/data/pipes/"
        f"{database}.{schema}.{pipe}/insertFiles?requestId={request_id}"
    )


def build_payload(remote_path: str, remote_size_bytes: int) -> Dict[str, Any]:
    return {"files": [{"path": remote_path, "size": int(remote_size_bytes)}]}


class IngestNotifier:
    """
    Announces staged files to a pipe's insertFiles endpoint.
    """

    def __init__(
        self,
        account: str,
        database: str,
        schema: str,
        pipe: str,
        cloud_host: str = DEFAULT_CLOUD_HOST,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            account: Account identifier used in the host name
            database: Database containing the pipe
            schema: Schema containing the pipe
            pipe: Pipe name
            cloud_host: Host suffix after the account
            timeout: HTTP timeout in seconds
            session: Optional requests session to reuse
        """
        self.account = account
        self.database = database
        self.schema = schema
        self.pipe = pipe
        self.cloud_host = cloud_host
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def url_for(self, request_id: str) -> str:
        return build_insert_files_url(
            self.account, self.database, self.schema, self.pipe,
            request_id, self.cloud_host,
        )

    def notify(
        self,
        remote_path: str,
        remote_size_bytes: int,
        token: Union[SignedToken, str],
    ) -> str:
        """
        Register one staged file with the pipe.

        Args:
            remote_path: Path returned by the stage upload
            remote_size_bytes: Size returned by the stage upload
            token: Bearer token minted for this call

        Returns:
            The requestId sent with the call

        Raises:
            NotificationError: On a non-2xx response or transport failure
        """
        request_id = str(uuid.uuid4())
        url = self.url_for(request_id)
        bearer = token.value if isinstance(token, SignedToken) else token

        logger.debug(f"POST {url}")
        try:
            response = self.session.post(
                url,
                json=build_payload(remote_path, remote_size_bytes),
                headers={"Authorization": f"Bearer {bearer}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotificationError(remote_path, None, request_id, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise NotificationError(
                remote_path, response.status_code, request_id, response.text[:200]
            )

        logger.info(f"insertFiles accepted {remote_path} (requestId={request_id})")
        return request_id

    def close(self) -> None:
        self.session.close()
