from bcrypt import checkpw, gensalt, hashpw


def hash_password(raw_password: str) -> str:
    return hashpw(raw_password.encode("utf-8"), gensalt()).decode("utf-8")


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    if not raw_password or not hashed_password:
        return False
    return checkpw(raw_password.encode("utf-8"), hashed_password.encode("utf-8"))
