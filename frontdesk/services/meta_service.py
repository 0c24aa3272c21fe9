import httpx

from frontdesk.logging_config import get_logger

logger = get_logger("meta_service")


class MetaSendError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MetaTransport:
    """Graph API sender for WhatsApp Cloud and Messenger/Instagram DMs."""

    def __init__(self, graph_url: str = "https://graph.facebook.com/v18.0", timeout: float = 15.0):
        self.graph_url = graph_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, access_token: str, payload: dict) -> dict:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.graph_url}/{path}",
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise MetaSendError(f"Graph API transport error: {e}") from e

        logger.info(f"Graph API response: status={response.status_code}, path={path}, body={response.text[:200]}")
        if response.status_code >= 400:
            raise MetaSendError(
                f"Graph API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return {}

    def send_whatsapp(self, access_token: str, phone_number_id: str, to: str, text: str) -> dict:
        return self._post(
            f"{phone_number_id}/messages",
            access_token,
            {"messaging_product": "whatsapp", "to": to, "type": "text", "text": {"body": text}},
        )

    def send_messenger(self, access_token: str, page_id: str, recipient_id: str, text: str) -> dict:
        """Messenger and Instagram DMs share the page-scoped send endpoint."""
        return self._post(
            f"{page_id}/messages",
            access_token,
            {"recipient": {"id": recipient_id}, "message": {"text": text}},
        )
