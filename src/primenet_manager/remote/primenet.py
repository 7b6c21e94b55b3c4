"""mersenne.org manual-testing pages: login, manual assignments, manual results."""

from __future__ import annotations

import logging
from urllib.parse import urljoin

from primenet_manager.config import DeviceSettings
from primenet_manager.http.fetcher import HttpFetcher
from primenet_manager.remote.base import RemoteReply
from primenet_manager.sync.records import grammar_for

logger = logging.getLogger(__name__)

ASSIGNMENT_PATH = "/manual_assignment/"
RESULT_PATH = "/manual_result/default.php"
RESULT_ACK_TOKEN = "processing:"
TF_WORK_PREFERENCE = "2"


class PrimeNetClient:
    """Session, assignment provider and result sink backed by mersenne.org."""

    name = "primenet"

    def __init__(
        self,
        *,
        fetcher: HttpFetcher,
        username: str,
        password: str,
        base_url: str = "https://www.mersenne.org/",
    ) -> None:
        self.fetcher = fetcher
        self.username = username
        self.password = password
        self.base_url = base_url

    def login(self) -> bool:
        result = self.fetcher.post_form(
            self.base_url,
            {"user_login": self.username, "user_password": self.password},
        )
        if not result.is_success:
            logger.warning(
                "PrimeNet login failed: status=%d error=%s",
                result.status_code,
                result.error,
            )
            return False
        if f"{self.username}<br>logged in" not in result.content:
            logger.warning("PrimeNet login rejected for user %s", self.username)
            return False
        logger.info("Logged in to PrimeNet as %s", self.username)
        return True

    def fetch_assignments(self, count: int, device: DeviceSettings) -> RemoteReply:
        preference = TF_WORK_PREFERENCE if device.kind == "tf" else device.work_type
        result = self.fetcher.get(
            urljoin(self.base_url, ASSIGNMENT_PATH),
            params={
                "cores": "1",
                "num_to_get": str(count),
                "pref": preference,
                "exp_lo": "",
                "exp_hi": "",
                "B1": "Get Assignments",
            },
        )
        if not result.is_success:
            logger.warning(
                "PrimeNet assignment request failed: status=%d error=%s",
                result.status_code,
                result.error,
            )
            return RemoteReply.from_failed_fetch(result)
        return RemoteReply.accepted(grammar_for(device.kind).find_assignments(result.content))

    def submit(self, batch: str) -> RemoteReply:
        result = self.fetcher.post_form(
            urljoin(self.base_url, RESULT_PATH),
            {"data": batch, "B1": "Submit"},
        )
        if not result.is_success:
            logger.warning(
                "PrimeNet result submission failed: status=%d error=%s",
                result.status_code,
                result.error,
            )
            return RemoteReply.from_failed_fetch(result)
        if RESULT_ACK_TOKEN not in result.content:
            logger.warning(
                "PrimeNet did not acknowledge %d-byte result batch (status=%d)",
                len(batch),
                result.status_code,
            )
            return RemoteReply.rejected(f"no {RESULT_ACK_TOKEN!r} in response")
        return RemoteReply.accepted()
