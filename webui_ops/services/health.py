"""HTTP health checks for the Ollama API."""

import logging
from typing import Optional

import httpx

from webui_ops.exceptions import ServiceUnavailable
from webui_ops.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


def default_health_policy() -> RetryPolicy:
    """Five attempts, two seconds apart."""
    return RetryPolicy(max_attempts=5, base_delay=2.0)


class HealthChecker:
    """Poll an HTTP endpoint until it answers with a success status."""

    def __init__(
        self,
        url: str,
        policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.policy = policy or default_health_policy()
        self.client = client
        self.timeout = timeout

    def check_once(self) -> str:
        """Perform one request.

        Returns:
            The response body (Ollama answers with its version)

        Raises:
            httpx.HTTPError: Connection failure, timeout or error status
        """
        if self.client is not None:
            response = self.client.get(self.url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.url)
        response.raise_for_status()
        return response.text

    def is_up(self) -> bool:
        """Single check without retries."""
        try:
            self.check_once()
        except httpx.HTTPError as e:
            logger.debug(f"Health check for {self.url} failed: {e}")
            return False
        return True

    def wait_until_up(self) -> str:
        """Poll with the retry policy.

        Raises:
            ServiceUnavailable: If every attempt failed
        """
        try:
            body = self.policy.call(
                self.check_once,
                exceptions=(httpx.HTTPError,),
                description=f"health check {self.url}",
            )
        except httpx.HTTPError as e:
            raise ServiceUnavailable(
                f"{self.url} did not respond after {self.policy.max_attempts} attempts: {e}"
            )
        logger.info(f"{self.url} is responding")
        return body
