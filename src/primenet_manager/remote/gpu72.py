"""gpu72.com assignment page for trial-factoring work."""

from __future__ import annotations

import logging
from urllib.parse import urljoin

from primenet_manager.config import DeviceSettings
from primenet_manager.http.fetcher import HttpFetcher
from primenet_manager.remote.base import RemoteReply
from primenet_manager.sync.records import TF_GRAMMAR

logger = logging.getLogger(__name__)


class Gpu72Client:
    """Assignment provider backed by the GPU72 account pages (basic auth)."""

    name = "gpu72"

    def __init__(
        self,
        *,
        fetcher: HttpFetcher,
        username: str,
        password: str,
        base_url: str = "https://www.gpu72.com/",
    ) -> None:
        self.fetcher = fetcher
        self.username = username
        self.password = password
        self.base_url = base_url

    def fetch_assignments(self, count: int, device: DeviceSettings) -> RemoteReply:
        if device.kind != "tf":
            return RemoteReply.accepted()
        result = self.fetcher.post_form(
            urljoin(self.base_url, f"/account/getassignments/{device.work_type}/"),
            {
                "Number": str(count),
                "GHzDays": "",
                "Low": "",
                "High": "",
                "Pledge": str(device.target_exponent),
                "Option": str(device.gpu72_option),
            },
            auth=(self.username, self.password),
        )
        if not result.is_success:
            logger.warning(
                "GPU72 assignment request failed: status=%d error=%s",
                result.status_code,
                result.error,
            )
            return RemoteReply.from_failed_fetch(result)
        # The page source lists every assignment twice; WorkCache dedupes.
        return RemoteReply.accepted(TF_GRAMMAR.find_assignments(result.content))
