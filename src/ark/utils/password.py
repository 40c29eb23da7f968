import getpass
import sys

from ark.utils.errors import PromptError

MIN_PASSWORD_LENGTH = 8


def _get_password(prompt: str) -> str:
    try:
        if sys.stdin.isatty():
            return getpass.getpass(prompt)
        # Piped input: one line, no echo suppression needed.
        print(prompt, end="", file=sys.stderr, flush=True)
        line = sys.stdin.readline()
    except (EOFError, OSError) as exc:
        raise PromptError(f"failed to read password: {exc}") from exc
    if not line:
        raise PromptError("failed to read password: no input")
    return line.rstrip("\r\n")


def get_master_password() -> str:
    password = _get_password("Enter master password: ")
    if not password:
        raise PromptError("password cannot be empty")
    return password


def get_password_with_confirmation(prompt: str, confirm_prompt: str) -> str:
    password = _get_password(prompt)
    if password != _get_password(confirm_prompt):
        raise PromptError("passwords do not match")
    return password


def setup_master_password() -> str:
    print("Setting up master password for ark...")
    print("This password will be used to encrypt all your sensitive data.")
    password = _get_password("Enter master password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PromptError(f"password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if password != _get_password("Confirm master password: "):
        raise PromptError("passwords do not match")
    return password


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PromptError(f"password must be at least {MIN_PASSWORD_LENGTH} characters long")
    checks = (
        (any(c.isupper() for c in password), "an uppercase letter"),
        (any(c.islower() for c in password), "a lowercase letter"),
        (any(c.isdigit() for c in password), "a digit"),
        (any(not c.isalnum() and c.isprintable() and not c.isspace() for c in password), "a special character"),
    )
    for ok, what in checks:
        if not ok:
            raise PromptError(f"password must contain at least {what}")


def get_directory_password() -> str:
    password = _get_password("Enter directory password: ")
    if not password:
        raise PromptError("password cannot be empty")
    return password
