"""
HTTP Speaker Device for SoundStage.

Drives a networked speaker through a tiny HTTP control API:
- POST {base_url}/play  {"sound_id": ..., "volume": ...}
- POST {base_url}/stop

This device is transport-only. It makes no decisions about volume or
ordering; it renders whatever the output layer asks for and reports failures
by raising DeviceFailure.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from soundstage.errors import DeviceFailure
from .base_device import BaseOutputDevice

logger = logging.getLogger(__name__)


class HttpSpeakerDevice(BaseOutputDevice):
    """
    Output device backed by a remote speaker's HTTP control endpoint.
    """

    def __init__(
        self,
        device_id: str,
        base_url: str,
        timeout: float = 2.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize HTTP speaker device.

        Args:
            device_id: Registry id for this speaker
            base_url: Speaker control URL (e.g. http://10.0.0.12:8080)
            timeout: Per-request timeout in seconds (device calls must never block indefinitely)
            client: Optional pre-built httpx.Client (tests inject a MockTransport here)
        """
        super().__init__(device_id)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None

        # Suppress httpx INFO level logging (one request per fade step is noisy)
        logging.getLogger("httpx").setLevel(logging.WARNING)

        logger.info(f"HttpSpeakerDevice {device_id} initialized (url={self.base_url})")

    def play(self, sound_id: str, volume: float) -> None:
        self._post("play", "/play", {"sound_id": sound_id, "volume": round(float(volume), 4)})

    def stop(self) -> None:
        self._post("stop", "/stop", None)

    def close(self) -> None:
        """Close the underlying client if this device created it."""
        if self._owns_client:
            self._client.close()

    def _post(self, action: str, path: str, payload: Optional[Dict[str, Any]]) -> None:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeviceFailure(
                f"{self.device_id} rejected {action}: HTTP {e.response.status_code}",
                device_id=self.device_id,
                action=action,
            )
        except httpx.HTTPError as e:
            raise DeviceFailure(
                f"{self.device_id} unreachable during {action}: {e}",
                device_id=self.device_id,
                action=action,
            )
