"""Local key pair lifecycle and provider registration."""

from __future__ import annotations

import hashlib
import io
import logging
import os
import shutil
import stat
import time
from datetime import datetime, timezone
from pathlib import Path

import paramiko
from cryptography.hazmat.primitives import serialization

from spotshell.constants import RSA_KEY_BITS, SECONDS_PER_DAY
from spotshell.core.exceptions import ValidationError
from spotshell.core.interfaces import ProviderClient
from spotshell.core.models import KeyPair
from spotshell.utils import atomic_file_write, validate_resource_name

logger = logging.getLogger(__name__)

PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


def compute_fingerprint(public_key_material: str) -> str:
    """Compute the provider fingerprint of an imported RSA public key.

    This is the MD5 digest of the DER-encoded SubjectPublicKeyInfo, written
    as colon-separated hex pairs.

    Parameters
    ----------
    public_key_material : str
        Public key in OpenSSH format (``ssh-rsa AAAA... comment``)

    Returns
    -------
    str
        Fingerprint such as ``1f:51:ae:...``

    Raises
    ------
    ValidationError
        If the material is not a parseable public key
    """
    try:
        public_key = serialization.load_ssh_public_key(public_key_material.strip().encode())
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Unparseable public key: {e}") from e

    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashlib.md5(der, usedforsecurity=False).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


class KeyManager:
    """Keep a rotating local key pair registered with the provider.

    Parameters
    ----------
    provider : ProviderClient
        Provider client for the target region
    key_name : str
        Key pair name, also the private key file name
    key_dir : Path
        Directory holding the key files
    dry_run : bool
        Report local writes and provider changes instead of making them
    """

    def __init__(
        self,
        provider: ProviderClient,
        key_name: str,
        key_dir: Path,
        dry_run: bool = False,
    ) -> None:
        self.provider = provider
        self.key_name = validate_resource_name(key_name, "key name")
        self.key_dir = Path(key_dir).expanduser()
        self.dry_run = dry_run

    @property
    def private_key_path(self) -> Path:
        return self.key_dir / self.key_name

    @property
    def public_key_path(self) -> Path:
        return self.key_dir / f"{self.key_name}.pub"

    def ensure_key(
        self, rotate_if_older_than: int, force_rotate: bool = False
    ) -> KeyPair:
        """Make sure a fresh local key exists and matches the provider's copy.

        Parameters
        ----------
        rotate_if_older_than : int
            Maximum key age in days before it is rotated
        force_rotate : bool
            Rotate regardless of age

        Returns
        -------
        KeyPair
            Local key pair whose fingerprint equals the registered one
        """
        if not self._local_key_exists():
            logger.info("No local key %s, generating one", self.private_key_path)
            key = self._generate()
        elif force_rotate or self.key_age_days() > rotate_if_older_than:
            reason = "forced" if force_rotate else f"older than {rotate_if_older_than} days"
            logger.info("Rotating key %s (%s)", self.key_name, reason)
            self._backup()
            key = self._generate()
        else:
            key = self._load_existing()

        public_key_material = self._public_key_material(key)
        fingerprint = compute_fingerprint(public_key_material)
        self._sync_with_provider(public_key_material, fingerprint)

        return KeyPair(
            name=self.key_name,
            private_key_path=self.private_key_path,
            public_key_path=self.public_key_path,
            public_key_material=public_key_material,
            fingerprint=fingerprint,
        )

    def key_age_days(self) -> float:
        mtime = self.private_key_path.stat().st_mtime
        return (time.time() - mtime) / SECONDS_PER_DAY

    def _local_key_exists(self) -> bool:
        return self.private_key_path.exists() and self.public_key_path.exists()

    def _public_key_material(self, key: paramiko.RSAKey) -> str:
        return f"{key.get_name()} {key.get_base64()} {self.key_name}"

    def _generate(self) -> paramiko.RSAKey:
        """Generate an RSA key without passphrase and write both halves."""
        key = paramiko.RSAKey.generate(RSA_KEY_BITS)

        if self.dry_run:
            logger.info("[dry-run] would write key pair to %s", self.private_key_path)
            return key

        buffer = io.StringIO()
        key.write_private_key(buffer)

        self.key_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        atomic_file_write(self.private_key_path, buffer.getvalue(), PRIVATE_KEY_MODE)
        atomic_file_write(
            self.public_key_path, self._public_key_material(key) + "\n", PUBLIC_KEY_MODE
        )
        logger.info("Generated RSA %d-bit key %s", RSA_KEY_BITS, self.private_key_path)
        return key

    def _backup(self) -> None:
        """Copy both halves to timestamped backups with the same permissions."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

        for path, mode in (
            (self.private_key_path, PRIVATE_KEY_MODE),
            (self.public_key_path, PUBLIC_KEY_MODE),
        ):
            backup = path.with_name(f"{path.name}.{stamp}.bak")
            if self.dry_run:
                logger.info("[dry-run] would back up %s to %s", path, backup)
                continue
            fd = os.open(backup, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            with os.fdopen(fd, "wb") as target, path.open("rb") as source:
                shutil.copyfileobj(source, target)
            logger.info("Backed up %s to %s", path.name, backup.name)

    def _load_existing(self) -> paramiko.RSAKey:
        """Load the local key, repairing loose permissions and a stale public half.

        Raises
        ------
        ValidationError
            If the private key is unreadable or not an RSA key
        """
        try:
            key = paramiko.RSAKey.from_private_key_file(str(self.private_key_path))
        except (paramiko.SSHException, OSError) as e:
            raise ValidationError(
                f"Local key {self.private_key_path} is invalid: {e}. "
                "Rotate it with --force-rotate."
            ) from e

        for path, expected in (
            (self.private_key_path, PRIVATE_KEY_MODE),
            (self.public_key_path, PUBLIC_KEY_MODE),
        ):
            mode = stat.S_IMODE(path.stat().st_mode)
            if mode != expected:
                if self.dry_run:
                    logger.info("[dry-run] would chmod %o %s", expected, path)
                    continue
                logger.warning("Fixing permissions of %s (%o -> %o)", path, mode, expected)
                os.chmod(path, expected)

        on_disk = self.public_key_path.read_text(encoding="utf-8").split()
        if on_disk[:2] != [key.get_name(), key.get_base64()]:
            if self.dry_run:
                logger.info("[dry-run] would rewrite %s from the private key", self.public_key_path)
            else:
                logger.warning("%s does not match the private key, rewriting", self.public_key_path)
                atomic_file_write(
                    self.public_key_path,
                    self._public_key_material(key) + "\n",
                    PUBLIC_KEY_MODE,
                )

        return key

    def _sync_with_provider(self, public_key_material: str, fingerprint: str) -> None:
        registered = self.provider.describe_key_pair(self.key_name)

        if registered == fingerprint:
            logger.info("Key pair %s already registered", self.key_name)
            return

        if registered is not None:
            logger.info(
                "Registered fingerprint of %s differs (%s != %s), re-importing",
                self.key_name,
                registered,
                fingerprint,
            )
            self.provider.delete_key_pair(self.key_name)

        self.provider.import_key_pair(self.key_name, public_key_material)
        logger.info("Imported key pair %s (%s)", self.key_name, fingerprint)
