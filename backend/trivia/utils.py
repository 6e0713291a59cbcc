import random
import secrets
import time
import uuid

# No I or O, they read too much like 1 and 0 on a projector.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_LENGTH = 4


def now_ts() -> float:
    return time.time()


def new_id() -> str:
    return uuid.uuid4().hex


def new_token() -> str:
    return secrets.token_urlsafe(24)


def generate_code() -> str:
    return "".join(random.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalise_code(code: str) -> str:
    return code.strip().upper()


def clean_name(name: str, max_length: int) -> str:
    return name.strip()[:max_length].strip()


def name_key(name: str) -> str:
    return name.casefold()
