class PlatePayError(Exception):
    """Base class for every error raised by platepay."""


class ConfigError(PlatePayError):
    pass


class UnsupportedCountry(PlatePayError):
    def __init__(self, code):
        super().__init__(f"Unsupported country code: {code!r}")
        self.code = code


class PreprocessingError(PlatePayError):
    pass


class OCRInvocationError(PlatePayError):
    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class InvalidManualPlate(PlatePayError):
    def __init__(self, plate: str, country: str, examples=None):
        self.plate = plate
        self.country = country
        self.examples = list(examples or [])
        hint = f" (expected e.g. {', '.join(self.examples)})" if self.examples else ""
        super().__init__(f"Invalid {country} plate: {plate!r}{hint}")


class PaymentAPIError(PlatePayError):
    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code
