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

import logging

from typing import Optional

from .config import Config

OUTPUT_LOGGER = 'gpgwrap.output'


class DiagnosticsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # Raw output of gpg and gpg-agent is recorded as-is
        if record.name == OUTPUT_LOGGER:
            return record.getMessage()
        return f'gpg-wrapper: {record.getMessage()}\n'


class Diagnostics:
    """The log file in the scratch directory, enabled by GIT_TRACE.

    The file is only created when the first message is logged, and only if
    diagnostics are enabled at all.  When they are not, log calls made
    anywhere in the package go nowhere.
    """
    config: Config
    _handler: Optional[logging.FileHandler] = None
    _logger: logging.Logger

    def __init__(self, config: Config) -> None:
        self.config = config

    def install(self, logger: logging.Logger = logging.getLogger('gpgwrap')) -> None:
        if not self.config.diagnostics or self._handler is not None:
            return

        self._handler = logging.FileHandler(self.config.log_file, encoding='utf-8', delay=True)
        self._handler.terminator = ''
        self._handler.setFormatter(DiagnosticsFormatter())
        # debug records trace our own protocol handling and stay out of the file
        self._handler.setLevel(logging.INFO)
        logger.addHandler(self._handler)
        logger.setLevel(logging.INFO)
        self._logger = logger

    def close(self) -> None:
        if self._handler is None:
            return

        handler, self._handler = self._handler, None
        self._logger.removeHandler(handler)

        handler.acquire()
        try:
            if handler.stream is not None:
                handler.stream.write('\n')
                handler.flush()
        finally:
            handler.release()
        handler.close()
