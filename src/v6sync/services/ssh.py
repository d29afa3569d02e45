"""Non-interactive SSH command channel.

Used both to query the router for its prefix and to ship firewalld
payloads to remote hosts. Every call runs with ``BatchMode=yes`` so a
host that would prompt for a password fails instead of hanging, and with
a connect timeout plus an overall command timeout.
"""

import shlex
from typing import Optional

from v6sync.core.context import ExecutionContext
from v6sync.core.executor import CommandExecutor, CommandResult


# ssh exits with 255 when it could not connect or authenticate
SSH_CONNECT_FAILURE = 255


class SSHChannel:
    """Runs commands on ``[user@]host`` endpoints over ssh."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        connect_timeout: int = 10,
        command_timeout: int = 60,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    def build_command(self, host: str, remote_command: str) -> list[str]:
        """Build the ssh argv for a remote command."""
        return [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "--",
            host,
            remote_command,
        ]

    def run(
        self,
        host: str,
        remote_command: str,
        *,
        input: Optional[str] = None,
        readonly: bool = False,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Run a command on a host.

        Never raises on non-zero exit; callers map the return code.

        Raises:
            ExecutionError: If the command times out or ssh is missing
        """
        return self.executor.run(
            self.build_command(host, remote_command),
            description=description,
            check=False,
            readonly=readonly,
            input=input,
            timeout=self.connect_timeout + self.command_timeout,
        )

    def run_script(
        self,
        host: str,
        script: str,
        args: list[str],
        *,
        readonly: bool = False,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Run a bash script on a host in a single session.

        The script body travels on stdin and the arguments are quoted, so
        neither is interpreted by the remote login shell.
        """
        remote_command = shlex.join(["bash", "-s", "--", *args])
        return self.run(
            host,
            remote_command,
            input=script,
            readonly=readonly,
            description=description,
        )

    @staticmethod
    def connect_failed(result: CommandResult) -> bool:
        """True when ssh itself failed rather than the remote command."""
        return result.return_code == SSH_CONNECT_FAILURE
