"""Scoped access to credential-protected network shares."""

import subprocess
from contextlib import contextmanager
from typing import Iterator, Protocol

import structlog
from pydantic import BaseModel, Field, SecretStr

from filesync.sync.errors import RemoteAccessError

log = structlog.stdlib.get_logger()


class RemoteCredentials(BaseModel):
    """Credentials for the machine exposing a replica share."""

    computer_name: str = Field(default="", description="Host exposing the share")
    domain: str = Field(default="", description="Authentication domain, may be empty")
    username: str = Field(default="")
    password: SecretStr = Field(default=SecretStr(""))

    @property
    def is_complete(self) -> bool:
        """True when host, user name and password are all set."""
        return bool(self.computer_name and self.username and self.password.get_secret_value())

    @property
    def qualified_username(self) -> str:
        return f"{self.domain}\\{self.username}" if self.domain else self.username


class ShareMounter(Protocol):
    """Connects and disconnects a network share."""

    def connect(self, credentials: RemoteCredentials) -> None: ...

    def disconnect(self, credentials: RemoteCredentials) -> None: ...


class CommandShareMounter:
    """Mounts shares by running configured shell commands.

    Command arguments are ``str.format`` templates receiving
    ``computer_name``, ``domain``, ``username``, ``qualified_username`` and
    ``password``, for example ``["net", "use", "\\\\{computer_name}",
    "/user:{qualified_username}", "{password}"]``.
    """

    def __init__(self, connect_command: list[str], disconnect_command: list[str], timeout: float = 60.0):
        self._connect_command = connect_command
        self._disconnect_command = disconnect_command
        self._timeout = timeout

    def connect(self, credentials: RemoteCredentials) -> None:
        self._run(self._connect_command, credentials, "connect")

    def disconnect(self, credentials: RemoteCredentials) -> None:
        self._run(self._disconnect_command, credentials, "disconnect")

    def _run(self, template: list[str], credentials: RemoteCredentials, action: str) -> None:
        fields = {
            "computer_name": credentials.computer_name,
            "domain": credentials.domain,
            "username": credentials.username,
            "qualified_username": credentials.qualified_username,
            "password": credentials.password.get_secret_value(),
        }
        command = [part.format(**fields) for part in template]
        try:
            subprocess.run(command, check=True, capture_output=True, text=True, timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as e:
            # The command line carries the password; report the host and action only
            log.error("share_command_failed", action=action, computer_name=credentials.computer_name)
            raise RemoteAccessError(
                f"Failed to {action} network share on {credentials.computer_name}: {type(e).__name__}"
            ) from None


@contextmanager
def network_share_access(mounter: ShareMounter, credentials: RemoteCredentials) -> Iterator[None]:
    """
    Hold a network share connection for the duration of a block.

    The share is disconnected on every exit path, including exceptions and
    cancellation. A disconnect failure is logged and does not mask an
    exception raised by the block.

    Raises:
        RemoteAccessError: If the share cannot be connected, or cannot be
            disconnected after a block that succeeded
    """
    log.info("share_connecting", computer_name=credentials.computer_name, username=credentials.username)
    try:
        mounter.connect(credentials)
    except RemoteAccessError:
        raise
    except Exception as e:
        raise RemoteAccessError(f"Failed to connect network share on {credentials.computer_name}: {e}") from e

    block_failed = False
    try:
        yield
    except BaseException:
        block_failed = True
        raise
    finally:
        try:
            mounter.disconnect(credentials)
            log.info("share_disconnected", computer_name=credentials.computer_name)
        except Exception as e:
            log.error("share_disconnect_failed", computer_name=credentials.computer_name, error=str(e))
            if not block_failed:
                if isinstance(e, RemoteAccessError):
                    raise
                raise RemoteAccessError(
                    f"Failed to disconnect network share on {credentials.computer_name}: {e}"
                ) from e
