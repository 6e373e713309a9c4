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

import re
import signal

from typing import ClassVar, Optional, Pattern


class GpgProcessError(Exception):
    """The gpg process failed, either with an exit status or a signal.

    The complete stdout and stderr of the process are kept so that the caller
    can decide whether (and when) to relay them.
    """
    returncode: Optional[int]
    signal: Optional[int]
    stdout: bytes
    stderr: bytes

    def __init__(self, returncode: Optional[int], signal: Optional[int], stdout: bytes, stderr: bytes) -> None:
        if returncode is not None and returncode != 0:
            message = f'gpg process exited abnormally with code {returncode}.'
        else:
            message = f'gpg process terminated with signal {signal_name(signal)}.'
        super().__init__(message)
        self.returncode = returncode
        self.signal = signal
        self.stdout = stdout
        self.stderr = stderr

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode(errors='replace')


class AgentError(Exception):
    pass


class GpgError(Exception):
    PATTERN: ClassVar[Pattern]

    def __init__(self, failure: GpgProcessError) -> None:
        super().__init__(str(failure))
        self.failure = failure


class GpgSignalError(GpgError):
    pass


class BadPassphraseError(GpgError):
    PATTERN = re.compile(r'Bad passphrase')


class OperationCancelledError(GpgError):
    PATTERN = re.compile(r'Operation cancelled')


def signal_name(signum: Optional[int]) -> str:
    if signum is None:
        return 'null'
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def split_returncode(returncode: int) -> 'tuple[Optional[int], Optional[int]]':
    # subprocess reports death-by-signal as a negative return code
    if returncode < 0:
        return None, -returncode
    return returncode, None


def get_terminal_error(failure: GpgProcessError) -> Optional[GpgError]:
    """Decide whether a failed gpg run is a genuine failure.

    A gpg that was killed, that was told the wrong passphrase, or whose
    pinentry was dismissed by the user has failed for real, and the matching
    GpgError is returned.  Any other failure is taken to mean that gpg could
    not prompt for a passphrase at all, in which case None is returned and the
    run may be retried with a different pinentry.
    """
    if failure.signal is not None:
        return GpgSignalError(failure)

    stderr = failure.stderr_text
    for cls in [BadPassphraseError, OperationCancelledError]:
        if cls.PATTERN.search(stderr) is not None:
            return cls(failure)

    return None
