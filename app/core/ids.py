import secrets
import uuid

def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def gen_token(nbytes: int = 8) -> str:
    return secrets.token_hex(nbytes)


def mask_secret(value: str | None) -> str:
    # keep enough of an API key to tell keys apart in logs
    if not value:
        return "NOT_SET"
    if len(value) <= 12:
        return "*" * len(value)
    return f"{value[:8]}...{value[-4:]}"
