import httpx
import logging
import re

from core.errors import DeliveryError

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
CHANNEL_PREFIX = "whatsapp:"

def normalize_address(address: str) -> str:
    """'+973 3612-3456' -> 'whatsapp:+97336123456'"""
    value = address.strip()
    if value.lower().startswith(CHANNEL_PREFIX):
        value = value[len(CHANNEL_PREFIX):]
    value = re.sub(r"[\s\-()]", "", value)
    if value.startswith("00"):
        value = value[2:]
    if not value.startswith("+"):
        value = f"+{value}"
    return f"{CHANNEL_PREFIX}{value}"

class WhatsAppClient:
    def __init__(self, account_sid: str, auth_token: str, client: httpx.AsyncClient,
                 base_url: str = TWILIO_API_URL):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.client = client
        self.url = f"{base_url}/Accounts/{account_sid}/Messages.json"

    async def send(self, from_address: str, to_address: str, body: str) -> str:
        """Send one message and return the provider message SID"""
        data = {
            "From": normalize_address(from_address),
            "To": normalize_address(to_address),
            "Body": body,
        }
        try:
            response = await self.client.post(self.url, data=data, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            raise DeliveryError(f"Twilio request failed: {e}")

        if response.status_code // 100 != 2:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise DeliveryError(f"Twilio rejected message ({response.status_code}): {detail}",
                                response.status_code)
        try:
            sid = response.json()["sid"]
        except (ValueError, KeyError, TypeError):
            raise DeliveryError("Twilio response did not include a message sid", response.status_code)
        logger.debug(f"Twilio accepted message {sid} to {data['To']}")
        return sid
