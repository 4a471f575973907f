# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/engine/errors.py

CHECKSUM_FAILED_MESSAGE = (
    "Checksum verification failed. The downloaded binaries may be corrupted."
)


class BootstrapError(RuntimeError):
    """Base class for engine bootstrap failures."""


class ProbeFailure(BootstrapError):
    """An availability probe could not run. Never surfaced; treated as 'unavailable'."""


class NetworkError(BootstrapError):
    """Manifest could not be fetched."""


class DownloadError(NetworkError):
    """An artifact download failed or was cut short."""


class IntegrityFailure(BootstrapError):
    """A downloaded artifact does not match the manifest checksum."""

    def __init__(self, message: str = CHECKSUM_FAILED_MESSAGE):
        super().__init__(message)


class InstallError(BootstrapError):
    """The package-manager or binary install procedure failed."""


class VmStartError(BootstrapError):
    """colima could not start the VM."""


class ConnectivityError(BootstrapError):
    """The engine did not answer after the VM started."""


class LocalValidationError(BootstrapError):
    """A request was rejected locally without touching the backend."""


class PhaseTimeout(BootstrapError):
    def __init__(self, phase: str, timeout_s: float):
        super().__init__(f"{phase} timed out after {timeout_s:g}s")
        self.phase = phase
        self.timeout_s = timeout_s
