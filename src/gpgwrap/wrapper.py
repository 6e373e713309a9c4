# gpgwrap - transparent pinentry fallback for gpg, using gpg-agent(1)
#
# Copyright (C) 2026 The gpgwrap authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

import asyncio
import logging
import os
import sys

from typing import BinaryIO, Dict, NoReturn, Sequence

from . import agent, config, home, invocation
from .config import Config
from .diagnostics import Diagnostics
from .errors import GpgProcessError, get_terminal_error
from .invocation import GpgInvocation

logger = logging.getLogger(__name__)


class GpgWrapper:
    """Runs gpg on behalf of git, falling back to our own pinentry if needed.

    First, gpg is run normally, against the user's own home directory, with
    whatever pinentry it's configured to use.  If that fails for a reason
    other than a wrong passphrase or the user cancelling the prompt, we assume
    that the configured pinentry can't work here (usually: there is no
    terminal).  In that case the home directory is copied to a private
    location, a gpg-agent using our pinentry launcher is started for the
    copy, and gpg is run a second time against it.

    Each step is a method so that it can be replaced in a subclass.
    """
    config: Config
    stdin: BinaryIO
    stdout: BinaryIO
    stderr: BinaryIO

    def __init__(self, config: Config, stdin: BinaryIO, stdout: BinaryIO, stderr: BinaryIO) -> None:
        self.config = config
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr

    async def resolve_gpg_program(self) -> str:
        return await config.resolve_gpg_program(self.config)

    async def read_stdin(self) -> bytes:
        return await asyncio.get_running_loop().run_in_executor(None, self.stdin.read)

    async def clone_home(self, source: str, dest: str) -> None:
        await home.clone_home(source, dest)

    async def launch_agent(self, isolated_home: str) -> Dict[str, str]:
        return await agent.launch_agent(self.config, isolated_home)

    async def run_gpg(self, gpg_invocation: GpgInvocation) -> int:
        return await invocation.run_gpg(gpg_invocation, self.config.environ, self.stdout, self.stderr)

    def relay(self, failure: GpgProcessError) -> None:
        self.stderr.write(failure.stderr)
        self.stderr.flush()
        self.stdout.write(failure.stdout)
        self.stdout.flush()

    async def try_native_pinentry(self, gpg_program: str, args: Sequence[str], gpg_stdin: bytes) -> 'int | None':
        """Returns the exit status, or None if we should try our own pinentry."""
        logger.info('Attempting to execute gpg with native pinentry.')
        try:
            return await self.run_gpg(GpgInvocation(gpg_program, args, self.config.gpg_home, {}, gpg_stdin))
        except GpgProcessError as exc:
            terminal_error = get_terminal_error(exc)
            if terminal_error is None:
                logger.info('Native pinentry failed. This is ok.')
                return None

            # Continue dying.
            logger.info('gpg failed for real: %r', terminal_error)
            self.relay(exc)
            return exc.returncode if exc.returncode is not None else 1

    async def try_isolated_pinentry(self, gpg_program: str, args: Sequence[str], gpg_stdin: bytes) -> int:
        logger.info('Attempting to execute gpg with isolated pinentry.')
        isolated_home = self.config.isolated_home
        await self.clone_home(self.config.gpg_home, isolated_home)
        agent_env = await self.launch_agent(isolated_home)
        return await self.run_gpg(GpgInvocation(gpg_program, args, isolated_home, agent_env, gpg_stdin))

    async def run(self, args: Sequence[str]) -> int:
        exit_code = 1
        try:
            gpg_program, gpg_stdin = await asyncio.gather(self.resolve_gpg_program(), self.read_stdin())

            native = await self.try_native_pinentry(gpg_program, args, gpg_stdin)
            if native is not None:
                exit_code = native
            else:
                exit_code = await self.try_isolated_pinentry(gpg_program, args, gpg_stdin)
        except Exception as exc:
            logger.error('Failed with error:\n%s', exc)
        return exit_code


def main() -> NoReturn:
    wrapper_config = Config.from_environ(os.environ)
    diagnostics = Diagnostics(wrapper_config)
    diagnostics.install()
    wrapper = GpgWrapper(wrapper_config, sys.stdin.buffer, sys.stdout.buffer, sys.stderr.buffer)
    try:
        exit_code = asyncio.run(wrapper.run(sys.argv[1:]))
    finally:
        diagnostics.close()
    sys.exit(exit_code)
