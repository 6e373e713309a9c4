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
import subprocess

from typing import BinaryIO, Dict, List, Mapping, NamedTuple, Optional, Sequence

from .diagnostics import OUTPUT_LOGGER
from .errors import GpgProcessError, split_returncode

logger = logging.getLogger(__name__)
output_logger = logging.getLogger(OUTPUT_LOGGER)


class GpgInvocation(NamedTuple):
    """One run of gpg: which binary, against which home, with what input."""
    program: str
    args: Sequence[str]
    home: str
    env: Mapping[str, str]
    stdin: bytes

    def argv(self) -> List[str]:
        return [self.program, '--batch', '--no-tty', '--yes', '--homedir', self.home, *self.args]

    def build_env(self, inherited: Mapping[str, str]) -> Dict[str, str]:
        """Return the complete environment for gpg.

        Only the overlay is passed, plus PATH, GPG_AGENT_INFO and GNUPGHOME,
        which fall back to `inherited` (or, for GNUPGHOME, to our home) if the
        overlay doesn't provide them.
        """
        env = dict(self.env)
        if not env.get('PATH') and 'PATH' in inherited:
            env['PATH'] = inherited['PATH']
        if not env.get('GPG_AGENT_INFO'):
            env['GPG_AGENT_INFO'] = inherited.get('GPG_AGENT_INFO', '')
        if not env.get('GNUPGHOME'):
            env['GNUPGHOME'] = self.home
        return env


class GpgProtocol(asyncio.SubprocessProtocol):
    stdout: bytearray
    stderr: bytearray

    _completion_future: 'asyncio.Future[int]'
    _transport: Optional[asyncio.SubprocessTransport] = None

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._completion_future = loop.create_future()
        self.stdout = bytearray()
        self.stderr = bytearray()

    def feed_stdin(self, data: bytes) -> None:
        assert self._transport is not None
        stdin_transport = self._transport.get_pipe_transport(0)
        assert isinstance(stdin_transport, asyncio.WriteTransport)
        stdin_transport.write(data)
        stdin_transport.write_eof()

    async def wait(self) -> int:
        return await self._completion_future

    # SubprocessProtocol implementation
    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        assert isinstance(transport, asyncio.SubprocessTransport)
        self._transport = transport

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        logger.debug('pipe_data_received(%r, %r, %r)', self, fd, len(data))
        output_logger.info('%s', data.decode(errors='replace'))
        if fd == 1:
            self.stdout.extend(data)
        else:
            self.stderr.extend(data)

    def pipe_connection_lost(self, fd: int, exc: 'Exception | None') -> None:
        # gpg is free to exit without reading all of its input
        logger.debug('pipe_connection_lost(%r, %r, %r)', self, fd, exc)

    def connection_lost(self, exc: 'Exception | None') -> None:
        # The process exited and all of its pipes are closed
        logger.debug('connection_lost(%r, %r)', self, exc)
        assert self._transport is not None
        if self._completion_future.done():
            return
        if exc is not None:
            self._completion_future.set_exception(exc)
        else:
            returncode = self._transport.get_returncode()
            assert returncode is not None
            self._completion_future.set_result(returncode)


async def run_gpg(invocation: GpgInvocation, inherited: Mapping[str, str],
                  stdout: BinaryIO, stderr: BinaryIO) -> int:
    """Run gpg to completion, feeding it the invocation's stdin.

    If gpg succeeds, its stderr and stdout are written to `stderr` and
    `stdout`, and its exit status (0) is returned.

    If it fails, GpgProcessError is raised holding all of the output, and
    nothing is written: the caller decides what to do with it.  OSError is
    raised if gpg couldn't be started at all.
    """
    argv = invocation.argv()
    logger.info('Executing %s.', ' '.join(argv))

    loop = asyncio.get_running_loop()
    transport, protocol = await loop.subprocess_exec(
        lambda: GpgProtocol(loop), *argv, env=invocation.build_env(inherited),
        stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        protocol.feed_stdin(invocation.stdin)
        returncode, signum = split_returncode(await protocol.wait())
    finally:
        transport.close()

    if (returncode is not None and returncode != 0) or signum is not None:
        failure = GpgProcessError(returncode, signum, bytes(protocol.stdout), bytes(protocol.stderr))
        logger.info('%s', failure)
        raise failure

    logger.info('gpg process terminated normally.')
    stderr.write(protocol.stderr)
    stderr.flush()
    stdout.write(protocol.stdout)
    stdout.flush()
    assert returncode is not None
    return returncode
