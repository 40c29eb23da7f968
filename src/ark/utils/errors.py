"""Error taxonomy shared by every ark component.

Commands catch ``ArkError`` at the top level and print the message; anything
else is a bug and is left to propagate with its traceback.
"""


class ArkError(Exception):
    """Base class for all user-facing failures."""


class ConfigError(ArkError):
    pass


class NotInitializedError(ArkError):
    def __init__(self, message: str = "ark is not initialized. Run 'ark init' first"):
        super().__init__(message)


class PromptError(ArkError):
    pass


class DerivationError(ArkError):
    pass


class AuthenticationError(ArkError):
    # Never say which check failed.
    def __init__(self, message: str = "invalid password"):
        super().__init__(message)


class NotFoundError(ArkError):
    pass


class NotLockedError(NotFoundError):
    pass


class AlreadyLockedError(ArkError):
    pass


class NotDirectoryError(ArkError):
    pass


class DecryptError(ArkError):
    pass


class CorruptDataError(DecryptError):
    pass


class EncodeError(ArkError):
    pass


class DecodeError(ArkError):
    pass


class BucketMissingError(ArkError):
    pass


class StoreLockedError(ArkError):
    pass


class InvalidFormatError(ArkError):
    pass
