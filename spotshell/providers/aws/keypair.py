"""Registration of locally generated public keys as EC2 key pairs."""

import logging
from typing import Any

from spotshell.providers.aws.errors import call_aws
from spotshell.providers.aws.utils import build_tags
from spotshell.providers.exceptions import ProviderNotFoundError

logger = logging.getLogger(__name__)


class KeyPairManager:
    """Manage EC2 key pairs backed by local key material."""

    def __init__(self, ec2_client: Any, region: str) -> None:
        self.ec2_client = ec2_client
        self.region = region

    def describe_key_pair(self, name: str) -> str | None:
        """Return the fingerprint of a registered key pair.

        Parameters
        ----------
        name : str
            Key pair name

        Returns
        -------
        str | None
            Registered fingerprint, or None if the key pair does not exist
        """
        try:
            response = call_aws(self.ec2_client, "describe_key_pairs", KeyNames=[name])
        except ProviderNotFoundError:
            return None

        key_pairs = response.get("KeyPairs", [])
        return key_pairs[0].get("KeyFingerprint") if key_pairs else None

    def import_key_pair(self, name: str, public_key_material: str) -> str:
        """Import an OpenSSH public key under ``name``.

        Returns
        -------
        str
            Fingerprint computed by the provider
        """
        response = call_aws(
            self.ec2_client,
            "import_key_pair",
            KeyName=name,
            PublicKeyMaterial=public_key_material.encode("utf-8"),
            TagSpecifications=[{"ResourceType": "key-pair", "Tags": build_tags()}],
        )
        logger.debug("Imported key pair %s in %s", name, self.region)
        return response["KeyFingerprint"]

    def delete_key_pair(self, name: str) -> None:
        call_aws(self.ec2_client, "delete_key_pair", KeyName=name)
