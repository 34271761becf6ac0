from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


class CredentialCipher:
    """Encrypts portal secrets at rest; decryption happens once per run."""

    def __init__(self, key: str, logger) -> None:
        if not str(key or "").strip():
            raise RuntimeError("credential_key is not configured")
        self._fernet = Fernet(key.strip().encode("utf-8"))
        self.logger = logger

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(str(secret).encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError):
            self.logger.warning("Stored portal secret could not be decrypted")
            return None
