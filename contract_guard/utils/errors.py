"""Error taxonomy for contract regression runs."""


class ContractGuardError(Exception):
    """Base class for all contract-guard errors."""


class AuthenticationError(ContractGuardError):
    """Credentials could not be obtained.

    Fatal to a single test when raised inside the runner, and fatal to the
    whole discovery phase when raised while obtaining the discovery token.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DiscoveryFetchError(ContractGuardError):
    """A single discovery GET failed. The category is skipped."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status = status


class StepExecutionError(ContractGuardError):
    """A runner HTTP call failed before a response was received."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SwaggerParseError(ContractGuardError):
    """The endpoint catalog could not be fetched or parsed."""
