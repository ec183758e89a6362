# backend/errors.py

from typing import Optional


class ServiceError(Exception):
    """
    Lỗi nghiệp vụ có mã (code) để trả về client trong envelope {code, message}.
    """

    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ServiceError):
    code = "invalid_parameter"


class SettingsValidationError(ValidationError):
    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


class MissingRequiredSetting(SettingsValidationError):
    def __init__(self, key: str):
        super().__init__(key, f"Missing required setting: {key}")


class NotFound(ServiceError):
    code = "not_found"


class ProviderNotFound(NotFound):
    def __init__(self, provider_id: str):
        super().__init__(f"AI provider not found in system: {provider_id}")
        self.provider_id = provider_id


class GenerationDispatchError(ServiceError):
    """
    Gọi provider (hoặc relay) thất bại.
    """

    def __init__(self, provider_id: str, message: str, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.provider_id = provider_id
