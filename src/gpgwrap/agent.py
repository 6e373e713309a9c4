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
import re
import subprocess

from typing import Dict, Optional

from .config import Config
from .diagnostics import OUTPUT_LOGGER
from .errors import AgentError, signal_name, split_returncode

logger = logging.getLogger(__name__)
output_logger = logging.getLogger(OUTPUT_LOGGER)

AGENT_INFO_RE = re.compile(r'GPG_AGENT_INFO=([^;\s]+)')


class AgentProtocol(asyncio.SubprocessProtocol):
    """Watches a `gpg-agent --daemon` until it has detached.

    The agent forks, the child keeps running as the daemon and the parent
    exits once the daemon is ready, after printing the connection info.  We
    consider the launch complete when the parent has exited and its stdout is
    closed.  stderr is never waited for: with --verbose the daemon keeps it
    open for logging.

    The completion future is settled exactly once.  Whatever comes first (a
    spawn error or the exit status) wins, and anything later is ignored.
    """
    _completion_future: 'asyncio.Future[Dict[str, str]]'
    _transport: Optional[asyncio.SubprocessTransport] = None
    _stdout: bytearray
    _stdout_closed: bool = False
    _returncode: Optional[int] = None

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._completion_future = loop.create_future()
        self._stdout = bytearray()

    def _result(self, result: 'Dict[str, str] | Exception') -> None:
        logger.debug('_result(%r, %r)', self, result)
        if self._completion_future.done():
            logger.debug('  but already complete')
        elif isinstance(result, Exception):
            self._completion_future.set_exception(result)
        else:
            self._completion_future.set_result(result)

    def _consider_completion(self) -> None:
        if self._returncode is None or not self._stdout_closed:
            logger.debug('  but not ready yet')
            return

        returncode, signum = split_returncode(self._returncode)
        if returncode is not None and returncode != 0:
            self._result(AgentError(f'gpg-agent exited with status {returncode}.'))
        elif signum is not None:
            self._result(AgentError(f'gpg-agent was terminated with signal {signal_name(signum)}.'))
        else:
            logger.info('gpg-agent launched successfully.')
            self._result(parse_agent_info(self._stdout.decode(errors='replace')))

    def spawn_failed(self, exc: OSError) -> None:
        logger.error('gpg-agent failed to launch: %s', exc)
        self._result(exc)

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        assert isinstance(transport, asyncio.SubprocessTransport)
        self._transport = transport

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        logger.debug('pipe_data_received(%r, %r, %r)', self, fd, len(data))
        output_logger.info('%s', data.decode(errors='replace'))
        if fd == 1:
            self._stdout.extend(data)

    def pipe_connection_lost(self, fd: int, exc: 'Exception | None') -> None:
        logger.debug('pipe_connection_lost(%r, %r, %r)', self, fd, exc)
        if fd == 1:
            self._stdout_closed = True
            self._consider_completion()

    def process_exited(self) -> None:
        assert self._transport is not None
        self._returncode = self._transport.get_returncode()
        logger.debug('process_exited(%r): %r', self, self._returncode)
        self._consider_completion()

    async def wait(self) -> Dict[str, str]:
        return await self._completion_future


def parse_agent_info(stdout: str) -> Dict[str, str]:
    # gpg-agent 2.1 and later have a standard socket and print nothing here
    match = AGENT_INFO_RE.search(stdout)
    if match is None:
        return {}

    logger.info('Acquired agent info %s.', match.group(1))
    return {'GPG_AGENT_INFO': match.group(1)}


async def launch_agent(config: Config, home: str) -> Dict[str, str]:
    """Start a gpg-agent for `home` which asks for passphrases via our pinentry.

    Returns the environment variables needed to talk to the agent.  The
    mapping is empty if the agent didn't report any (which is normal).
    Raises AgentError if the agent fails, or OSError if it can't be spawned.
    """
    if not config.pinentry_launcher:
        raise AgentError('No pinentry launcher is configured.')

    logger.info('Starting an isolated GPG agent in %s.', home)
    args = [
        '--daemon',
        '--verbose',
        '--homedir', home,
        '--pinentry-program', config.pinentry_launcher,
    ]
    env = dict(config.agent_passthrough, GNUPGHOME=home)

    loop = asyncio.get_running_loop()
    protocol = AgentProtocol(loop)
    transport: Optional[asyncio.SubprocessTransport] = None

    logger.info('Spawning %s with %s', config.agent_program, ' '.join(args))
    try:
        transport, _ = await loop.subprocess_exec(
            lambda: protocol, config.agent_program, *args, env=env,
            stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as exc:
        protocol.spawn_failed(exc)

    try:
        return await protocol.wait()
    finally:
        if transport is not None:
            transport.close()
