"""Remote candidates: run the shell command over an SSH exec channel."""
import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import paramiko

from .errors import SpawnError
from .process import ShellFactory


class _ChannelReader:
    """Raw reader over a channel's stdout or stderr substream."""

    def __init__(self, channel: paramiko.Channel, stderr: bool = False):
        self._channel = channel
        self._stderr = stderr

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = 65535
        if self._stderr:
            return self._channel.recv_stderr(size)
        return self._channel.recv(size)

    def ready(self) -> bool:
        if self._stderr:
            return self._channel.recv_stderr_ready()
        # An EOF'd channel reads b'' immediately
        return self._channel.recv_ready() or self._channel.eof_received

    def close(self):
        pass


class _ChannelWriter(io.RawIOBase):

    def __init__(self, channel: paramiko.Channel):
        super().__init__()
        self._channel = channel

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        data = bytes(data)
        self._channel.sendall(data)
        return len(data)

    def close(self):
        if not self.closed:
            try:
                self._channel.shutdown_write()
            except (OSError, EOFError, paramiko.SSHException):
                pass
        super().close()


class SSHProcess:
    """Process handle for a command running on an SSH exec channel."""

    pid = None

    def __init__(self, client: paramiko.SSHClient, channel: paramiko.Channel):
        self._client = client
        self._channel = channel
        self.stdin = _ChannelWriter(channel)
        self.stdout = _ChannelReader(channel)
        self.stderr = _ChannelReader(channel, stderr=True)

    def poll(self) -> Optional[int]:
        if self._channel.exit_status_ready():
            return self._channel.recv_exit_status()
        if self._channel.closed:
            return -1
        return None

    def kill(self):
        logger = logging.getLogger('sushell.ssh')
        try:
            self._channel.close()
        except Exception as e:
            logger.warning(f"Error closing channel: {e}")
        try:
            self._client.close()
        except Exception as e:
            logger.warning(f"Error closing client: {e}")

    def __repr__(self):
        return f"SSHProcess(channel={self._channel!r})"


@dataclass(kw_only=True)
class SSHShellFactory(ShellFactory):
    """Spawns ``commands`` on a remote host instead of locally.

    Connection parameters resolve with precedence: ``OVRD_<host>_<KEY>``
    environment variables, then explicit arguments, then ``~/.ssh/config``.
    """
    host: str
    username: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None
    key_filename: Optional[str] = None

    CONNECT_TIMEOUT = 30

    def _get_env_override(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return os.environ.get(f"OVRD_{self.host}_{key}", default)

    def _load_ssh_config(self) -> paramiko.SSHConfig:
        """Load SSH config from default locations."""
        ssh_config = paramiko.SSHConfig()
        config_path = Path.home() / '.ssh' / 'config'

        if config_path.exists():
            with open(config_path) as f:
                ssh_config.parse(f)

        return ssh_config

    def _resolve_connection(self) -> tuple[Dict[str, Any], str, str, int]:
        """Resolve SSH connection parameters using config precedence."""
        host_config = self._load_ssh_config().lookup(self.host)
        resolved_host = self._get_env_override('HOST') or host_config.get('hostname', self.host)
        resolved_username = (self._get_env_override('USER') or self.username
                             or host_config.get('user', os.getenv('USER', 'root')))
        resolved_port = self.port or int(host_config.get('port', 22))

        port_override = self._get_env_override('PORT')
        if port_override:
            try:
                resolved_port = int(port_override)
            except ValueError:
                logging.getLogger('sushell.ssh').warning(
                    f"Ignoring invalid port override for {self.host}: {port_override!r}")
        return host_config, resolved_host, resolved_username, resolved_port

    def spawn(self) -> SSHProcess:
        logger = logging.getLogger('sushell.ssh').getChild('spawn')
        host_config, resolved_host, resolved_username, resolved_port = self._resolve_connection()
        target = f"{resolved_username}@{resolved_host}:{resolved_port}"

        connect_kwargs = {
            'hostname': resolved_host,
            'port': resolved_port,
            'username': resolved_username,
            'timeout': self.CONNECT_TIMEOUT,
            'banner_timeout': self.CONNECT_TIMEOUT,
            'auth_timeout': self.CONNECT_TIMEOUT,
        }
        password = self._get_env_override('PASS') or self.password
        key_filename = (self._get_env_override('KEY') or self.key_filename
                        or host_config.get('identityfile', [None])[0])
        if password:
            connect_kwargs['password'] = password
            logger.debug("Connecting with password")
        elif key_filename:
            connect_kwargs['key_filename'] = os.path.expanduser(key_filename)
            logger.debug(f"Connecting with key: {connect_kwargs['key_filename']}")
        else:
            logger.debug("Connecting without password or key (agent or no auth)")

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(**connect_kwargs)
            channel = client.get_transport().open_session()
            channel.exec_command(self.describe())
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.error(f"[SSH_SPAWN_FAIL] {target}: {type(e).__name__}: {e}")
            client.close()
            raise SpawnError(f"Unable to start {self.describe()} on {target}: {e}") from e

        logger.info(f"[SSH_SPAWN] {self.describe()} on {target}")
        return SSHProcess(client, channel)
