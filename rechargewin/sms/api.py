import logging
import time
from urllib.parse import urljoin
from typing import Any, Mapping, Optional

import requests
from dotenv import load_dotenv

from ..errors import SMSGatewayError
from .utils import gateway_env, open_session

logger = logging.getLogger(__name__)

DEFAULT_SEND_PATH = "/sms/send"
DEFAULT_STATUS_PATH = "/notifications/status/{message_id}"


class SMSGatewayClient:
    """HTTPS client for one outbound SMS gateway (MTN, KODOBE, UDUX...).

    ``base_url`` and ``token`` default to ``SMS_<NAME>_BASE_URL`` and
    ``SMS_<NAME>_TOKEN``; the send path may be overridden with
    ``SMS_<NAME>_SEND_PATH``.
    """

    def __init__(
        self,
        name: str,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        send_path: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        self.name = name.upper()
        url = base_url or gateway_env(self.name, "BASE_URL")
        if not url:
            raise ValueError(f"Environment variable 'SMS_{self.name}_BASE_URL' is not set")
        secret = token or gateway_env(self.name, "TOKEN")
        if not secret:
            raise ValueError(f"Environment variable 'SMS_{self.name}_TOKEN' is not set")
        if timeout is None or timeout <= 0:
            raise ValueError("SMS gateway timeout must be a positive number of seconds")

        self.base_url = url.rstrip("/")
        self.token = secret
        self.send_path = send_path or gateway_env(self.name, "SEND_PATH") or DEFAULT_SEND_PATH
        self.timeout = timeout
        self.session = session or open_session()

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<SMSGatewayClient(name={self.name}, base_url={self.base_url})>"

    # -------- headers --------
    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token}",
        }

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=headers or self.auth_headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def send_sms(self, msisdn: str, message: str, correlation_id: Optional[str] = None) -> str:
        """Send one SMS and return the gateway's message id.

        Raises
        ------
        SMSGatewayError
            If the request fails, times out or the response has no message id.
        """
        payload = {"to": msisdn, "message": message}
        if correlation_id is not None:
            payload["correlationId"] = correlation_id
        try:
            body = self._request("POST", self.send_path, json=payload)
        except requests.RequestException as exc:
            raise SMSGatewayError(f"{self.name} gateway request failed: {exc}") from exc
        except ValueError as exc:
            raise SMSGatewayError(f"{self.name} gateway returned invalid JSON") from exc

        message_id = (body or {}).get("messageId") if isinstance(body, dict) else None
        if not message_id:
            raise SMSGatewayError(f"{self.name} gateway response has no messageId")
        return str(message_id)

    def get_delivery_status(self, message_id: str) -> str:
        try:
            body = self._request(
                "GET", DEFAULT_STATUS_PATH.format(message_id=message_id)
            )
        except requests.RequestException as exc:
            raise SMSGatewayError(f"{self.name} status request failed: {exc}") from exc
        except ValueError as exc:
            raise SMSGatewayError(f"{self.name} gateway returned invalid JSON") from exc
        if not isinstance(body, dict) or "status" not in body:
            raise SMSGatewayError(f"{self.name} status response has no status")
        return str(body["status"])


class LoggingSMSGateway:
    """Stand-in gateway for development that logs instead of sending."""

    def __init__(self, name: str = "MOCK"):
        self.name = name.upper()
        self.sent: list[dict] = []

    def send_sms(self, msisdn: str, message: str, correlation_id: Optional[str] = None) -> str:
        message_id = f"{self.name}-MOCK-MSG-{time.time_ns()}"
        self.sent.append(
            {"to": msisdn, "message": message, "correlationId": correlation_id, "messageId": message_id}
        )
        # Only the correlation id is logged; bodies and numbers stay out of logs.
        logger.info(f"[{self.name} mock] simulated SMS {correlation_id} -> {message_id}")
        return message_id

    def get_delivery_status(self, message_id: str) -> str:
        return "DELIVERED"
