from typing import Any

from Crypto.PublicKey import RSA

from fedreceiver import activitypub as ap


class Key(object):
    def __init__(self, owner: str, id_: str | None = None) -> None:
        self.owner = owner
        self.privkey_pem: str | None = None
        self.pubkey_pem: str | None = None
        self.privkey: RSA.RsaKey | None = None
        self.pubkey: RSA.RsaKey | None = None
        self.id_ = id_

    def load_pub(self, pubkey_pem: str) -> None:
        self.pubkey_pem = pubkey_pem
        self.pubkey = RSA.importKey(pubkey_pem)

    def load(self, privkey_pem: str) -> None:
        self.privkey_pem = privkey_pem
        self.privkey = RSA.importKey(self.privkey_pem)
        self.pubkey = self.privkey.publickey()
        self.pubkey_pem = self.pubkey.exportKey("PEM").decode("utf-8")

    def key_id(self) -> str:
        return self.id_ or f"{self.owner}#main-key"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Key":
        """Loads a standalone `Key` document."""
        try:
            k = cls(data["owner"], data["id"])
            k.load_pub(data["publicKeyPem"])
        except (KeyError, ValueError, TypeError):
            raise ValueError(f"bad key data {data!r}")
        return k

    @classmethod
    def from_actor(cls, raw_actor: ap.RawObject) -> "Key":
        """Loads the key embedded in an actor document."""
        try:
            public_key = raw_actor["publicKey"]
            k = cls(ap.get_id(raw_actor["id"]), public_key["id"])
            k.load_pub(public_key["publicKeyPem"])
        except (KeyError, ValueError, TypeError):
            raise ValueError(f"no usable key on actor {raw_actor.get('id')}")
        return k
