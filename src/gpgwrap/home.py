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
import shutil
import stat

from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def _run_blocking(func: Callable[..., T], *args: object) -> T:
    return await asyncio.get_running_loop().run_in_executor(None, func, *args)


async def _gather_or_cancel(*coroutines: Coroutine[Any, Any, None]) -> None:
    # Like asyncio.gather(), but the first failure cancels the siblings
    # which are still in progress before it is raised.
    loop = asyncio.get_running_loop()
    tasks = [loop.create_task(coroutine) for coroutine in coroutines]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _copy_entry(source: str, dest: str) -> None:
    st = await _run_blocking(os.lstat, source)

    if stat.S_ISREG(st.st_mode):
        logger.debug('  copy %s', source)
        await _run_blocking(shutil.copyfile, source, dest)

    elif stat.S_ISDIR(st.st_mode):
        await _run_blocking(os.mkdir, dest, 0o700)
        await _copy_directory(source, dest)

    else:
        # sockets of a running agent, symlinks, etc.
        logger.debug('  skipping %s', source)


async def _copy_directory(source: str, dest: str) -> None:
    entries = await _run_blocking(os.listdir, source)
    await _gather_or_cancel(*(
        _copy_entry(os.path.join(source, entry), os.path.join(dest, entry)) for entry in entries
    ))


async def clone_home(source: str, dest: str) -> None:
    """Make an independent copy of the gpg home directory `source` at `dest`.

    `dest` must not exist yet.  It, and every directory below it, is created
    accessible only to the owner.  Regular files are copied by content, and
    directories are recreated; anything else is left out.  Nothing in the
    copy refers back to the original, so an agent started on the copy can
    never modify the original.

    On failure, the first error is raised and the partial copy is left behind.
    """
    logger.info('Creating an isolated GPG home %s.', dest)
    await _run_blocking(os.mkdir, dest, 0o700)

    logger.info('Copying GPG home from %s to %s.', source, dest)
    await _copy_directory(source, dest)
