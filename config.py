import os
from typing import Optional

import keyring
import keyring.errors
import yaml


class YamlConfig:
    """Settings file for the session engine.

    With ``ENCRYPT_SETTINGS=1`` the trainer webhook URL is kept in the system
    keyring; the YAML file only records that one is configured.
    """

    SERVICE = "session-engine"
    SECRET = "webhook_url"

    def __init__(self, path: str = "settings.yaml", encrypt: Optional[bool] = None) -> None:
        self.path = path
        if encrypt is None:
            encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.encrypt = encrypt

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def load(self) -> dict:
        data = self._read()
        if self.encrypt and self.SECRET in data:
            url = keyring.get_password(self.SERVICE, self.SECRET)
            if url:
                data[self.SECRET] = url
            else:
                del data[self.SECRET]
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt and self.SECRET in out:
            if out[self.SECRET]:
                keyring.set_password(self.SERVICE, self.SECRET, str(out[self.SECRET]))
                out[self.SECRET] = True
            else:
                self.forget_webhook()
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f, sort_keys=True)

    def forget_webhook(self) -> None:
        """Remove a stored webhook URL from the keyring, if any."""
        try:
            keyring.delete_password(self.SERVICE, self.SECRET)
        except keyring.errors.PasswordDeleteError:
            pass
