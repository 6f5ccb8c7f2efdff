from __future__ import annotations


class GovAlertError(Exception):
    """Base class for every error raised by the alert engine."""


class ConfigError(GovAlertError):
    pass


class DataAccessError(GovAlertError):
    """The monitored-validator store could not be read."""


class AddressError(GovAlertError, ValueError):
    pass


class EndpointUnavailable(GovAlertError):
    def __init__(self, chain_name: str, tried: list[str] | None = None) -> None:
        self.chain_name = chain_name
        self.tried = list(tried or [])
        super().__init__(f"no reachable REST endpoint for chain={chain_name} tried={len(self.tried)}")


class FetchError(GovAlertError):
    """Network failure, timeout or unexpected HTTP status on a single call."""

    def __init__(self, message: str, *, endpoint: str, status_code: int | None = None) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (endpoint={self.endpoint} status={self.status_code})"
        return f"{base} (endpoint={self.endpoint})"


class DecodeError(FetchError):
    """Response body could not be decoded. Handled like a FetchError by callers."""


class SinkError(GovAlertError):
    pass
