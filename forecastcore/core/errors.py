class ForecastError(Exception):
    """Base exception for forecast engine errors."""

    default_message = "An error occurred in the forecast engine"

    def __init__(self, message: str | None = None, code: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        payload = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.code:
            payload["code"] = self.code
        if self.details:
            payload["details"] = self.details
        return payload


class ForecastConfigurationError(ForecastError):
    """Schema or snapshot is structurally invalid; computation cannot proceed."""

    default_message = "Forecast configuration error"


class InvalidIdentifierError(ForecastError):
    """A month or metric identifier could not be parsed."""

    default_message = "Invalid identifier"
