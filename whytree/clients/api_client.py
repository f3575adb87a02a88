# whytree/clients/api_client.py

"""
HTTP transport for a running whytree API.

Lets the CLI (or any other client) keep the session state locally while the
model credential lives only on the server.
"""

from typing import Any, Dict, Optional, Sequence

import requests

from whytree.core.errors import ModelGatewayError, error_from_code
from whytree.core.exchange import ChatReply
from whytree.core.models import ROLE_ASSISTANT, Message
from whytree.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_API_BASE = "http://127.0.0.1:8000"
DEFAULT_TIMEOUT_SEC = 90.0


class ChatApiClient:
    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "whytree/cli (requests)"})

    def _url(self, path: str) -> str:
        return f"{self.api_base}/{path.lstrip('/')}"

    def health(self) -> Dict[str, Any]:
        url = self._url("health")
        try:
            resp = self._session.get(url, timeout=5)
        except requests.RequestException as e:
            raise ModelGatewayError(f"Could not reach the whytree API at {self.api_base}.") from e
        if resp.status_code != 200:
            raise ModelGatewayError(f"/health returned status {resp.status_code}.")
        return resp.json()

    def exchange(self, messages: Sequence[Message], wants_tree: bool) -> ChatReply:
        payload = {
            "messages": [m.to_dict() for m in messages],
            "shouldGenerateTree": wants_tree,
        }
        url = self._url("chat")

        try:
            resp = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("[api_client] POST %s failed: %s", url, e)
            raise ModelGatewayError(f"Could not reach the whytree API at {self.api_base}.") from e

        try:
            data = resp.json()
        except ValueError as e:
            logger.error("[api_client] non-JSON response status=%d body=%r",
                         resp.status_code, (resp.text or "")[:400])
            raise ModelGatewayError("The whytree API returned an invalid response.") from e

        if resp.status_code != 200:
            data = data if isinstance(data, dict) else {}
            message = data.get("error") or f"The whytree API returned status {resp.status_code}."
            logger.warning("[api_client] status=%d code=%s error=%s",
                           resp.status_code, data.get("code"), message)
            raise error_from_code(data.get("code"), message)

        return _parse_chat_response(data)


def _parse_chat_response(data: Any) -> ChatReply:
    try:
        message = Message.from_dict(data["message"])
    except (KeyError, TypeError, ValueError) as e:
        raise ModelGatewayError("The whytree API returned a malformed message.") from e

    if message.role != ROLE_ASSISTANT:
        raise ModelGatewayError("The whytree API returned a non-assistant message.")

    tree = data.get("mermaidCode")
    return ChatReply(message=message, tree_artifact=tree if isinstance(tree, str) and tree else None)

