import logging

from .agent import launch_agent, parse_agent_info
from .config import Config, resolve_gpg_program
from .diagnostics import Diagnostics
from .errors import (
    AgentError,
    BadPassphraseError,
    GpgError,
    GpgProcessError,
    GpgSignalError,
    OperationCancelledError,
    get_terminal_error,
)
from .home import clone_home
from .invocation import GpgInvocation, run_gpg
from .wrapper import GpgWrapper, main

__all__ = [
    'AgentError',
    'BadPassphraseError',
    'Config',
    'Diagnostics',
    'GpgError',
    'GpgInvocation',
    'GpgProcessError',
    'GpgSignalError',
    'GpgWrapper',
    'OperationCancelledError',
    'clone_home',
    'get_terminal_error',
    'launch_agent',
    'main',
    'parse_agent_info',
    'resolve_gpg_program',
    'run_gpg',
]

__version__ = '0'

# Log records go nowhere unless Diagnostics installs a handler.  In
# particular, they must never end up on the stderr that git reads from us.
logging.getLogger(__name__).addHandler(logging.NullHandler())
