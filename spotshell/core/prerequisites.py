"""Environment checks run before anything is provisioned."""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from spotshell.core.config import REGION_PATTERN
from spotshell.core.exceptions import ValidationError
from spotshell.core.interfaces import ProviderClient
from spotshell.providers.aws.utils import get_aws_credentials_error_message
from spotshell.providers.exceptions import ProviderCredentialsError, ProviderError

logger = logging.getLogger(__name__)

KEY_DIR_MODE = 0o700


@dataclass
class PrerequisiteReport:
    """Outcome of every prerequisite check.

    Attributes
    ----------
    passed : list[str]
        Names of checks that succeeded
    failures : dict[str, str]
        Failed check name mapped to the reason
    account : str | None
        Account the credentials belong to, when resolvable
    """

    passed: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    account: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failures


class PrerequisiteChecker:
    """Verify credentials, permissions and local tooling.

    Parameters
    ----------
    provider : ProviderClient
        Client for the target region
    key_dir : Path
        Directory holding the local key pair
    which : Callable[[str], str | None]
        Executable lookup, injectable for tests
    repair : bool
        Create or restrict the key directory instead of only reporting it
    """

    def __init__(
        self,
        provider: ProviderClient,
        key_dir: Path,
        which: Callable[[str], str | None] = shutil.which,
        repair: bool = True,
    ) -> None:
        self.provider = provider
        self.key_dir = Path(key_dir)
        self.which = which
        self.repair = repair

    def check(self) -> PrerequisiteReport:
        """Run all checks and raise if any failed.

        Returns
        -------
        PrerequisiteReport
            Report with every check passed

        Raises
        ------
        ValidationError
            Listing every failed check
        """
        report = PrerequisiteReport()

        self._run(report, "region", self._check_region)
        self._run(report, "credentials", lambda: self._check_credentials(report))
        if "credentials" in report.passed:
            self._run(report, "ec2-permissions", self._check_describe_permission)
            self._run(report, "default-vpc", self._check_default_vpc)
        self._run(report, "ssh-client", self._check_ssh_client)
        self._run(report, "key-directory", self._check_key_dir)

        if not report.ok:
            details = "\n".join(
                f"  - {name}: {reason}" for name, reason in report.failures.items()
            )
            raise ValidationError(f"Prerequisite checks failed:\n{details}")

        logger.info("Prerequisites OK (%d checks)", len(report.passed))
        return report

    def _run(
        self, report: PrerequisiteReport, name: str, check: Callable[[], None]
    ) -> None:
        try:
            check()
        except (ValidationError, ProviderError, OSError) as e:
            logger.debug("Prerequisite %s failed: %s", name, e)
            report.failures[name] = str(e)
        else:
            logger.debug("Prerequisite %s passed", name)
            report.passed.append(name)

    def _check_region(self) -> None:
        if not re.fullmatch(REGION_PATTERN, self.provider.region):
            raise ValidationError(f"'{self.provider.region}' is not a valid region name")

    def _check_credentials(self, report: PrerequisiteReport) -> None:
        try:
            identity = self.provider.get_caller_identity()
        except ProviderCredentialsError as e:
            raise ValidationError(get_aws_credentials_error_message()) from e
        report.account = identity.get("Account")
        logger.info("Using account %s", report.account)

    def _check_describe_permission(self) -> None:
        if not self.provider.can_describe_instances():
            raise ValidationError("missing ec2:DescribeInstances permission")

    def _check_default_vpc(self) -> None:
        self.provider.get_default_vpc_id()

    def _check_ssh_client(self) -> None:
        if self.which("ssh") is None:
            raise ValidationError("OpenSSH client 'ssh' not found on PATH")

    def _check_key_dir(self) -> None:
        """Ensure the key directory exists and is private to the user."""
        if not self.key_dir.exists():
            if not self.repair:
                logger.info("[dry-run] would create %s", self.key_dir)
                return
            self.key_dir.mkdir(mode=KEY_DIR_MODE, parents=True)
            os.chmod(self.key_dir, KEY_DIR_MODE)
            logger.info("Created %s", self.key_dir)
            return

        if not self.key_dir.is_dir():
            raise ValidationError(f"{self.key_dir} exists but is not a directory")

        mode = stat.S_IMODE(self.key_dir.stat().st_mode)
        if mode & 0o077:
            if not self.repair:
                logger.info("[dry-run] would restrict %s to %o", self.key_dir, KEY_DIR_MODE)
                return
            logger.warning(
                "%s has permissions %o, restricting to %o", self.key_dir, mode, KEY_DIR_MODE
            )
            os.chmod(self.key_dir, KEY_DIR_MODE)
