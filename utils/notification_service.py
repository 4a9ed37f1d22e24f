"""
Push notifications to technicians' devices
"""

from typing import Any, Dict, List, Optional, Tuple, Union

import requests

import config
from utils.logger import get_logger

logger = get_logger("notifications")


class NotificationService:
    """Sends push messages through an FCM-compatible HTTP endpoint"""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        """
        settings: endpoint, server_key and timeout; defaults come from config
        """
        settings = settings or {}
        self.endpoint = settings.get("endpoint", config.PUSH_ENDPOINT)
        self.server_key = settings.get("server_key", config.PUSH_SERVER_KEY)
        self.timeout = settings.get("timeout", config.PUSH_TIMEOUT)

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def send_push(
        self,
        tokens: Union[str, List[str]],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None
    ) -> Tuple[bool, str]:
        """
        Send one notification to one or more device tokens

        Returns:
            tuple: (success, message)
        """
        if not self.enabled:
            return False, "Push notifications are not configured"

        if isinstance(tokens, str):
            tokens = [tokens]
        tokens = [t for t in tokens if t]
        if not tokens:
            return False, "No device token"

        headers = {'Content-Type': 'application/json'}
        if self.server_key:
            headers['Authorization'] = f'key={self.server_key}'

        sent = 0
        for token in tokens:
            payload = {
                'to': token,
                'notification': {'title': title, 'body': body},
                'data': data or {}
            }
            try:
                response = requests.post(
                    self.endpoint,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"push request failed: {e}")
                continue

            if response.status_code == 200:
                sent += 1
            else:
                logger.error(f"push rejected ({response.status_code}): {response.text[:200]}")

        if sent == len(tokens):
            return True, f"Sent {sent} notification(s)"
        if sent:
            return False, f"Sent {sent} of {len(tokens)} notifications"
        return False, "No notification was delivered"
