"""Runtime configuration for PrimeNet / GPU72 work management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SETTINGS_FILE = Path("settings.yml")
MAX_POLL_HOURS = 120
MIN_TF_TARGET = 73

DEVICE_KINDS: tuple[str, ...] = ("tf", "ll")
TF_WORK_TYPES: tuple[str, ...] = ("lltf", "dctf")
LL_WORK_TYPES: tuple[str, ...] = ("100", "101", "102")
GPU72_WORK_OPTIONS: dict[str, int] = {
    "what_makes_sense": 0,
    "lowest_tf_level": 1,
    "highest_tf_level": 2,
    "lowest_exponent": 3,
    "oldest_exponent": 4,
    "let_gpu72_decide": 9,
}


@dataclass(slots=True)
class PrimeNetSettings:
    """mersenne.org manual-testing account."""

    username: str = ""
    password: str = ""
    base_url: str = "https://www.mersenne.org/"
    request_timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.username and self.password)


@dataclass(slots=True)
class Gpu72Settings:
    """gpu72.com account used for trial-factoring assignments."""

    username: str = ""
    password: str = ""
    base_url: str = "https://www.gpu72.com/"

    @property
    def enabled(self) -> bool:
        return bool(self.username and self.password)


@dataclass(slots=True)
class PollingSettings:
    """Cycle scheduling and failure back-off."""

    poll_hours: int = 2
    retry_delay_seconds: float = 120.0
    max_failed_cycles: int = 10

    @property
    def poll_interval_seconds(self) -> float:
        return float(min(self.poll_hours, MAX_POLL_HOURS) * 3600)


@dataclass(slots=True)
class DeviceSettings:
    """One GPU worker directory and how to keep it fed."""

    device: int = 0
    directory: Path = Path(".")
    kind: str = "tf"
    work_type: str = "lltf"
    work_option: str = "what_makes_sense"
    target_exponent: int = MIN_TF_TARGET
    assignments: int = 5

    @property
    def gpu72_option(self) -> int:
        return GPU72_WORK_OPTIONS.get(self.work_option, 0)

    def normalized(self) -> DeviceSettings:
        """Return a copy with out-of-range values clamped to supported ones."""

        kind = self.kind.strip().lower()
        if kind not in DEVICE_KINDS:
            raise ValueError(f"Unsupported device Kind: {self.kind!r}. Expected 'tf' or 'll'.")
        work_type = str(self.work_type).strip().lower()
        target = self.target_exponent
        if kind == "tf":
            if work_type not in TF_WORK_TYPES:
                work_type = "lltf"
            target = max(target, MIN_TF_TARGET)
        elif work_type not in LL_WORK_TYPES:
            work_type = "101"
        work_option = self.work_option if self.work_option in GPU72_WORK_OPTIONS else (
            "what_makes_sense"
        )
        return replace(
            self,
            directory=Path(self.directory).expanduser(),
            kind=kind,
            work_type=work_type,
            work_option=work_option,
            target_exponent=target,
        )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    primenet: PrimeNetSettings = field(default_factory=PrimeNetSettings)
    gpu72: Gpu72Settings = field(default_factory=Gpu72Settings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    devices: tuple[DeviceSettings, ...] = (DeviceSettings(),)
    log_file: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load YAML settings (if present) and apply environment overrides."""

        settings_path = path or Path(
            os.getenv("PRIMENET_MANAGER_SETTINGS", str(DEFAULT_SETTINGS_FILE)),
        )
        settings = cls.from_yaml(settings_path) if settings_path.exists() else cls()
        return settings.with_env_overrides()

    @classmethod
    def from_yaml(cls, path: Path) -> Settings:
        with path.open(encoding="utf-8") as stream:
            raw = yaml.safe_load(stream) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file {path} must contain a mapping at the top level.")
        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> Settings:
        """Build settings from the legacy YAML key names."""

        defaults = cls()
        devices_raw = raw.get("Devices")
        if devices_raw is None:
            devices = defaults.devices
        else:
            if not isinstance(devices_raw, list):
                raise ValueError("Devices must be a list of device mappings.")
            devices = tuple(_device_from_mapping(item) for item in devices_raw)
        log_file = raw.get("Logs") or None
        return cls(
            primenet=PrimeNetSettings(
                username=str(raw.get("UserName") or ""),
                password=str(raw.get("Password") or ""),
            ),
            gpu72=Gpu72Settings(
                username=str(raw.get("GPU72UserName") or ""),
                password=str(raw.get("GPU72Password") or ""),
            ),
            polling=PollingSettings(
                poll_hours=_as_int(raw, "Poll", defaults.polling.poll_hours),
                retry_delay_seconds=float(
                    raw.get("RetryDelay", defaults.polling.retry_delay_seconds),
                ),
                max_failed_cycles=_as_int(
                    raw,
                    "MaxFailedCycles",
                    defaults.polling.max_failed_cycles,
                ),
            ),
            devices=devices,
            log_file=Path(log_file) if log_file else None,
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "UserName": self.primenet.username,
            "Password": self.primenet.password,
            "GPU72UserName": self.gpu72.username,
            "GPU72Password": self.gpu72.password,
            "Poll": self.polling.poll_hours,
            "RetryDelay": self.polling.retry_delay_seconds,
            "MaxFailedCycles": self.polling.max_failed_cycles,
            "Logs": str(self.log_file) if self.log_file else "",
            "Devices": [
                {
                    "Device": device.device,
                    "Directory": str(device.directory),
                    "Kind": device.kind,
                    "WorkType": device.work_type,
                    "WorkOption": device.work_option,
                    "TargetExponent": device.target_exponent,
                    "Assignments": device.assignments,
                }
                for device in self.devices
            ],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_mapping(), sort_keys=False)

    def write_yaml(self, path: Path) -> None:
        path.write_text(self.to_yaml(), encoding="utf-8")

    def with_env_overrides(self) -> Settings:
        """Apply PRIMENET_MANAGER_* environment variables on top of these settings."""

        polling = self.polling
        return replace(
            self,
            primenet=replace(
                self.primenet,
                username=os.getenv("PRIMENET_MANAGER_USER", self.primenet.username),
                password=os.getenv("PRIMENET_MANAGER_PASSWORD", self.primenet.password),
                base_url=os.getenv("PRIMENET_MANAGER_PRIMENET_URL", self.primenet.base_url),
                request_timeout_seconds=float(
                    os.getenv(
                        "PRIMENET_MANAGER_REQUEST_TIMEOUT_SECONDS",
                        str(self.primenet.request_timeout_seconds),
                    ),
                ),
            ),
            gpu72=replace(
                self.gpu72,
                username=os.getenv("PRIMENET_MANAGER_GPU72_USER", self.gpu72.username),
                password=os.getenv("PRIMENET_MANAGER_GPU72_PASSWORD", self.gpu72.password),
                base_url=os.getenv("PRIMENET_MANAGER_GPU72_URL", self.gpu72.base_url),
            ),
            polling=replace(
                polling,
                poll_hours=int(
                    os.getenv("PRIMENET_MANAGER_POLL_HOURS", str(polling.poll_hours)),
                ),
                retry_delay_seconds=float(
                    os.getenv(
                        "PRIMENET_MANAGER_RETRY_DELAY_SECONDS",
                        str(polling.retry_delay_seconds),
                    ),
                ),
                max_failed_cycles=int(
                    os.getenv(
                        "PRIMENET_MANAGER_MAX_FAILED_CYCLES",
                        str(polling.max_failed_cycles),
                    ),
                ),
            ),
        )

    def normalized(self) -> Settings:
        """Return a copy with poll hours capped and every device normalized."""

        return replace(
            self,
            polling=replace(
                self.polling,
                poll_hours=min(max(self.polling.poll_hours, 0), MAX_POLL_HOURS),
            ),
            devices=tuple(device.normalized() for device in self.devices),
        )

    def validate(self) -> None:
        """Raise configuration error if the settings cannot drive an update run."""

        if not (self.primenet.enabled or self.gpu72.enabled):
            raise ValueError(
                "PrimeNet (UserName/Password) or GPU72 (GPU72UserName/GPU72Password) "
                "credentials are required.",
            )
        if not self.devices:
            raise ValueError("At least one entry in Devices is required.")
        for index, device in enumerate(self.devices):
            if device.assignments <= 0:
                raise ValueError(f"Devices[{index}].Assignments must be a positive integer.")
            if device.kind == "ll" and not self.primenet.enabled:
                raise ValueError(
                    f"Devices[{index}] is an LL device; PrimeNet credentials are required.",
                )
        if self.polling.retry_delay_seconds < 0:
            raise ValueError("RetryDelay must be >= 0.")
        if self.polling.max_failed_cycles < 0:
            raise ValueError("MaxFailedCycles must be >= 0 (0 retries forever).")


def _device_from_mapping(raw: object) -> DeviceSettings:
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid Devices entry: {raw!r}. Expected a mapping.")
    defaults = DeviceSettings()
    kind = str(raw.get("Kind", defaults.kind))
    default_work_type = "101" if kind.strip().lower() == "ll" else defaults.work_type
    return DeviceSettings(
        device=_as_int(raw, "Device", defaults.device),
        directory=Path(str(raw.get("Directory", defaults.directory))),
        kind=kind,
        work_type=str(raw.get("WorkType", default_work_type)),
        work_option=str(raw.get("WorkOption", defaults.work_option)),
        target_exponent=_as_int(raw, "TargetExponent", defaults.target_exponent),
        assignments=_as_int(raw, "Assignments", defaults.assignments),
    )


def _as_int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise ValueError(f"Invalid integer value for {key}: {value!r}") from error
