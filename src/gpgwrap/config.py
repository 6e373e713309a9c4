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
import subprocess

from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_GPG = 'gpg'
DEFAULT_GPG_AGENT = 'gpg-agent'

# Variables handed through to gpg-agent, and from there, to the pinentry
# launcher.  Nothing else from our environment reaches the agent.
AGENT_PASSTHROUGH = (
    'PATH',
    'GIT_TRACE',
    'ATOM_GITHUB_TMP',
    'ATOM_GITHUB_ELECTRON_PATH',
    'ATOM_GITHUB_SOCK_PATH',
    'ATOM_GITHUB_PINENTRY_PATH',
)


class Config:
    """Everything the wrapper takes from its environment.

    The environment is read exactly once, by from_environ().  Tests construct
    instances directly (or adjust the attributes of one) instead of modifying
    os.environ.
    """
    tmpdir: str
    diagnostics: bool
    workdir: Optional[str]
    pinentry_launcher: Optional[str]
    spec_mode: bool
    original_path: str
    git_program: str
    gpg_home: str
    agent_program: str = DEFAULT_GPG_AGENT
    agent_passthrough: Mapping[str, str]
    environ: Mapping[str, str]

    def __init__(self,
                 tmpdir: str = '',
                 diagnostics: bool = False,
                 workdir: Optional[str] = None,
                 pinentry_launcher: Optional[str] = None,
                 spec_mode: bool = False,
                 original_path: str = '',
                 git_program: str = 'git',
                 gpg_home: Optional[str] = None,
                 agent_passthrough: Optional[Mapping[str, str]] = None,
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self.tmpdir = tmpdir
        # the log file goes into tmpdir, so it has to be usable
        self.diagnostics = diagnostics and os.path.isdir(tmpdir) and os.access(tmpdir, os.W_OK)
        self.workdir = workdir
        self.pinentry_launcher = pinentry_launcher
        self.spec_mode = spec_mode
        self.original_path = original_path
        self.git_program = git_program
        self.gpg_home = gpg_home or os.path.join(os.path.expanduser('~'), '.gnupg')
        self.agent_passthrough = dict(agent_passthrough or {})
        self.environ = dict(environ or {})

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> 'Config':
        tmpdir = environ.get('ATOM_GITHUB_TMP', '')
        return cls(
            tmpdir=tmpdir,
            diagnostics=bool(environ.get('GIT_TRACE')),
            workdir=environ.get('ATOM_GITHUB_WORKDIR_PATH'),
            pinentry_launcher=environ.get('ATOM_GITHUB_PINENTRY_LAUNCHER'),
            spec_mode=environ.get('ATOM_GITHUB_SPEC_MODE') == 'true',
            original_path=environ.get('ATOM_GITHUB_ORIGINAL_PATH', ''),
            git_program=find_git_program(environ.get('ATOM_GITHUB_DUGITE_PATH')),
            gpg_home=environ.get('GNUPGHOME'),
            agent_passthrough={key: environ[key] for key in AGENT_PASSTHROUGH if key in environ},
            environ=environ,
        )

    @property
    def isolated_home(self) -> str:
        return os.path.join(self.tmpdir, 'gpg-home')

    @property
    def log_file(self) -> str:
        return os.path.join(self.tmpdir, 'gpg-wrapper.log')


def find_git_program(dugite_path: Optional[str]) -> str:
    # dugite ships its own git, which is the one our caller runs
    if dugite_path:
        if not os.path.isdir(dugite_path):
            dugite_path = os.path.dirname(dugite_path)
        bundled = os.path.join(dugite_path, 'git', 'bin', 'git')
        if os.access(bundled, os.X_OK):
            return bundled
    return 'git'


async def query_git_config(args: Sequence[str], env: Mapping[str, str], cwd: Optional[str] = None) -> str:
    """Run `git config ...` and return its output, or '' on any failure."""
    logger.debug('query_git_config(%r, cwd=%r)', args, cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            *args, env=env, cwd=cwd or None,
            stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        stdout, _ = await process.communicate()
    except OSError as exc:
        logger.debug('  git config failed: %r', exc)
        return ''

    # `git config` exits 1 for a missing key, which is the common case
    if process.returncode != 0:
        logger.debug('  git config exited with status %r', process.returncode)
        return ''

    return stdout.decode(errors='replace').strip()


async def get_system_gpg_program(config: Config) -> str:
    if config.spec_mode:
        # Skip system configuration in test mode to stay reproducible across systems.
        return ''

    env = {
        'GIT_CONFIG_PARAMETERS': '',
        'PATH': config.original_path,
    }
    return await query_git_config(['git', 'config', '--system', 'gpg.program'], env)


async def resolve_gpg_program(config: Config) -> str:
    """Discover the real gpg program that git is configured to use."""
    env = dict(config.environ, GIT_CONFIG_PARAMETERS='')
    gpg_program = await query_git_config([config.git_program, 'config', 'gpg.program'], env, config.workdir)
    if gpg_program:
        logger.info('Discovered gpg program %s from non-system git configuration.', gpg_program)
        return gpg_program

    gpg_program = await get_system_gpg_program(config)
    if gpg_program:
        logger.info('Discovered gpg program %s from system git configuration.', gpg_program)
        return gpg_program

    logger.info('Using default gpg program.')
    return DEFAULT_GPG
