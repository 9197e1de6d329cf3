import logging

import requests

logger = logging.getLogger(__name__)


class TerminationNotifier:
    """Tells the interview backend that a session was terminated for violations."""

    def __init__(self, api_url: str, token: str, timeout: float = 10.0, session: requests.Session = None):
        self.api_url = (api_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.token)

    def notify(self, session_id: str, warning_count: int,
               reason: str = "Multiple monitoring violations") -> bool:
        if not self.configured or not session_id:
            logger.info("Termination endpoint not configured, skipping notification")
            return False
        try:
            resp = self.session.post(
                f"{self.api_url}/api/interview/terminate",
                json={"sessionId": session_id, "reason": reason, "warningCount": warning_count},
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Failed to notify interview termination: %s", e)
            return False
        logger.info("Interview %s marked as terminated", session_id)
        return True
