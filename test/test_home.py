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

import os
import stat
from pathlib import Path

import pytest

import gpgwrap


def make_tree(root: Path) -> None:
    root.mkdir()
    (root / 'a.txt').write_text('x')
    (root / 'sub').mkdir()
    (root / 'sub' / 'b.txt').write_text('y')


def read_tree(root: Path) -> 'dict[str, object]':
    tree: 'dict[str, object]' = {}
    for entry in root.iterdir():
        if entry.is_dir():
            tree[entry.name] = read_tree(entry)
        else:
            tree[entry.name] = entry.read_bytes()
    return tree


@pytest.mark.asyncio
async def test_clone(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))

    assert read_tree(tmp_path / 'dst') == {'a.txt': b'x', 'sub': {'b.txt': b'y'}}
    for directory in [tmp_path / 'dst', tmp_path / 'dst' / 'sub']:
        assert stat.S_IMODE(directory.stat().st_mode) & 0o077 == 0

    # the original is untouched
    assert read_tree(tmp_path / 'src') == {'a.txt': b'x', 'sub': {'b.txt': b'y'}}


@pytest.mark.asyncio
async def test_clone_twice(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    (tmp_path / 'src' / 'sub' / 'deeper').mkdir()
    (tmp_path / 'src' / 'sub' / 'deeper' / 'pubring.kbx').write_bytes(bytes(range(256)) * 64)

    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'one'))
    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'two'))
    assert read_tree(tmp_path / 'one') == read_tree(tmp_path / 'two') == read_tree(tmp_path / 'src')


@pytest.mark.asyncio
async def test_clone_is_independent(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))

    (tmp_path / 'dst' / 'a.txt').write_text('changed')
    assert not (tmp_path / 'dst' / 'a.txt').is_symlink()
    assert (tmp_path / 'src' / 'a.txt').read_text() == 'x'


@pytest.mark.asyncio
async def test_clone_skips_special_files(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    os.symlink('a.txt', tmp_path / 'src' / 'link')
    os.mkfifo(tmp_path / 'src' / 'S.gpg-agent')

    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))
    assert read_tree(tmp_path / 'dst') == {'a.txt': b'x', 'sub': {'b.txt': b'y'}}


@pytest.mark.asyncio
async def test_clone_empty(tmp_path: Path) -> None:
    (tmp_path / 'src').mkdir()
    await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))
    assert read_tree(tmp_path / 'dst') == {}


@pytest.mark.asyncio
async def test_clone_dest_exists(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    (tmp_path / 'dst').mkdir()
    with pytest.raises(FileExistsError):
        await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))


@pytest.mark.asyncio
async def test_clone_missing_source(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        await gpgwrap.clone_home(str(tmp_path / 'nonexistent'), str(tmp_path / 'dst'))


@pytest.mark.asyncio
@pytest.mark.skipif(os.geteuid() == 0, reason='root can read anything')
async def test_clone_unreadable(tmp_path: Path) -> None:
    make_tree(tmp_path / 'src')
    os.chmod(tmp_path / 'src' / 'sub' / 'b.txt', 0)
    with pytest.raises(PermissionError):
        await gpgwrap.clone_home(str(tmp_path / 'src'), str(tmp_path / 'dst'))
