# config.py -- Reading and writing Git config files
# Copyright (C) 2026 The gitstream developers
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitstream is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Reading git configuration files.

Only the parts of git-config that gitstream consults are interpreted: the
``user`` identity, ``core.sshCommand`` and the ``http`` transport
settings. Everything else is parsed and preserved but otherwise ignored.
"""

import logging
import os
import sys
from collections.abc import Iterable, Iterator
from typing import IO, Optional, Union

__all__ = [
    "Config",
    "ConfigDict",
    "ConfigFile",
    "StackedConfig",
    "get_user_identity",
    "get_xdg_config_home_path",
]

logger = logging.getLogger(__name__)

Name = bytes
NameLike = Union[bytes, str]
Section = tuple[bytes, ...]
SectionLike = Union[bytes, str, tuple[Union[bytes, str], ...]]
Value = bytes
ValueLike = Union[bytes, str]


def lower_key(key: Union[bytes, Section]) -> Union[bytes, Section]:
    """Lowercase a name or the section part of a section key.

    Subsection names are case sensitive and are left alone.
    """
    if isinstance(key, bytes):
        return key.lower()
    if key:
        return (key[0].lower(), *key[1:])
    return key


class _OrderedValues:
    """Case-insensitive mapping that remembers every value set for a key.

    Lookups return the last value, ``get_all`` returns all of them in the
    order they were read.
    """

    def __init__(self) -> None:
        self._real: list[tuple[bytes, bytes]] = []

    def __len__(self) -> int:
        return len({lower_key(k) for k, _ in self._real})

    def __contains__(self, key: object) -> bool:
        return isinstance(key, bytes) and any(
            lower_key(k) == key.lower() for k, _ in self._real
        )

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _OrderedValues) and self._real == other._real

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._real!r})"

    def __getitem__(self, key: bytes) -> bytes:
        lowered = key.lower()
        for k, v in reversed(self._real):
            if k.lower() == lowered:
                return v
        raise KeyError(key)

    def add(self, key: bytes, value: bytes) -> None:
        self._real.append((key, value))

    def set(self, key: bytes, value: bytes) -> None:
        """Replace all values of key with value."""
        lowered = key.lower()
        self._real = [(k, v) for k, v in self._real if k.lower() != lowered]
        self._real.append((key, value))

    def get_all(self, key: bytes) -> Iterator[bytes]:
        lowered = key.lower()
        for k, v in self._real:
            if k.lower() == lowered:
                yield v

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        return iter(list(self._real))


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        """Retrieve all values of a multivar configuration setting."""
        raise NotImplementedError(self.get_multivar)

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: Optional[bool] = None
    ) -> Optional[bool]:
        """Retrieve a configuration setting as boolean.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the setting
          default: Default value if setting is not found

        Returns:
          Contents of the setting
        Raises:
          ValueError: if the value is not a git boolean
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        value = value.lower()
        if value in (b"true", b"yes", b"on", b"1"):
            return True
        if value in (b"false", b"no", b"off", b"0", b""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def set(self, section: SectionLike, name: NameLike, value: Union[ValueLike, bool]) -> None:
        """Set a configuration value."""
        raise NotImplementedError(self.set)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Iterate over the configuration pairs for a specific section."""
        raise NotImplementedError(self.items)

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections."""
        raise NotImplementedError(self.sections)


class ConfigDict(Config):
    """Git configuration stored in a dictionary."""

    def __init__(self, encoding: Optional[str] = None) -> None:
        """Create a new ConfigDict."""
        if encoding is None:
            encoding = sys.getdefaultencoding()
        self.encoding = encoding
        self._sections: list[Section] = []
        self._values: dict[Section, _OrderedValues] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def _check_section_and_name(
        self, section: SectionLike, name: NameLike
    ) -> tuple[Section, Name]:
        if not isinstance(section, tuple):
            section = (section,)
        checked_section = tuple(
            s if isinstance(s, bytes) else s.encode(self.encoding) for s in section
        )
        if not isinstance(name, bytes):
            name = name.encode(self.encoding)
        return checked_section, name

    def _section(self, section: Section, create: bool = False) -> _OrderedValues:
        key = lower_key(section)
        assert isinstance(key, tuple)
        try:
            return self._values[key]
        except KeyError:
            if not create:
                raise
        self._sections.append(section)
        values = self._values[key] = _OrderedValues()
        return values

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        section, name = self._check_section_and_name(section, name)
        return self._section(section).get_all(name)

    def get(self, section: SectionLike, name: NameLike) -> Value:
        section, name = self._check_section_and_name(section, name)
        if len(section) > 1:
            try:
                return self._section(section)[name]
            except KeyError:
                pass
        return self._section((section[0],))[name]

    def set(self, section: SectionLike, name: NameLike, value: Union[ValueLike, bool]) -> None:
        section, name = self._check_section_and_name(section, name)
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        if not isinstance(value, bytes):
            value = value.encode(self.encoding)
        self._section(section, create=True).set(name, value)

    def add(self, section: SectionLike, name: NameLike, value: ValueLike) -> None:
        """Add a value to a setting, making it a multivar if it is set."""
        section, name = self._check_section_and_name(section, name)
        if not isinstance(value, bytes):
            value = value.encode(self.encoding)
        self._section(section, create=True).add(name, value)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        section, _ = self._check_section_and_name(section, b"")
        try:
            return self._section(section).items()
        except KeyError:
            return iter([])

    def sections(self) -> Iterator[Section]:
        return iter(list(self._sections))


_ESCAPES = {
    ord("\\"): b"\\",
    ord('"'): b'"',
    ord("n"): b"\n",
    ord("t"): b"\t",
    ord("b"): b"\b",
}
_COMMENT_CHARS = b"#;"
_BLANK_CHARS = b" \t"


def _parse_string(value: bytes) -> bytes:
    out = bytearray()
    # Unquoted blanks are held back so that trailing ones can be dropped.
    held = bytearray()
    in_quotes = False
    chars = iter(value.strip())
    for c in chars:
        if c == ord("\\"):
            escaped = next(chars, None)
            if escaped is None:
                raise ValueError("escape character at end of value")
            if escaped not in _ESCAPES:
                raise ValueError(f"unknown escape sequence \\{chr(escaped)}")
            out += held + _ESCAPES[escaped]
            held.clear()
        elif c == ord('"'):
            in_quotes = not in_quotes
        elif in_quotes:
            out += held
            held.clear()
            out.append(c)
        elif c in _COMMENT_CHARS:
            break
        elif c in _BLANK_CHARS:
            held.append(c)
        else:
            out += held
            held.clear()
            out.append(c)
    if in_quotes:
        raise ValueError("missing end quote")
    return bytes(out)


def _check_variable_name(name: bytes) -> bool:
    return bool(name) and name[:1].isalpha() and all(
        c.isalnum() or c == b"-" for c in (name[i : i + 1] for i in range(len(name)))
    )


def _check_section_name(name: bytes) -> bool:
    return all(
        c.isalnum() or c in (b"-", b".")
        for c in (name[i : i + 1] for i in range(len(name)))
    )


def _strip_comments(line: bytes) -> bytes:
    in_quotes = False
    for i, c in enumerate(line):
        if c == ord('"'):
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            return line[:i]
    return line


def _is_line_continuation(value: bytes) -> bool:
    """Check if a value ends with an unescaped, unquoted backslash."""
    content = value.rstrip(b"\r\n")
    if content == value or not content.endswith(b"\\"):
        return False
    backslashes = len(content) - len(content.rstrip(b"\\"))
    return backslashes % 2 == 1


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    line = _strip_comments(line).rstrip()
    in_quotes = False
    for i, c in enumerate(line):
        if c == ord(b'"'):
            in_quotes = not in_quotes
        if c == ord(b"]") and not in_quotes:
            last = i
            break
    else:
        raise ValueError("expected trailing ]")
    pts = line[1:last].split(b" ", 1)
    rest = line[last + 1 :]
    if len(pts) == 2:
        if pts[1][:1] != b'"' or pts[1][-1:] != b'"':
            raise ValueError(f"invalid subsection {pts[1]!r}")
        if not _check_section_name(pts[0]):
            raise ValueError(f"invalid section name {pts[0]!r}")
        subsection = pts[1][1:-1].replace(b'\\"', b'"').replace(b"\\\\", b"\\")
        return (pts[0], subsection), rest
    if not _check_section_name(pts[0]):
        raise ValueError(f"invalid section name {pts[0]!r}")
    # Deprecated [section.subsection] syntax
    pts = pts[0].split(b".", 1)
    if len(pts) == 2:
        return (pts[0], pts[1]), rest
    return (pts[0],), rest


class ConfigFile(ConfigDict):
    """A Git configuration file, like .git/config or ~/.gitconfig."""

    def __init__(self, encoding: Optional[str] = None) -> None:
        super().__init__(encoding=encoding)
        self.path: Optional[str] = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: if the file is not valid git configuration
        """
        ret = cls()
        section: Optional[Section] = None
        setting: Optional[bytes] = None
        continuation = b""
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            if setting is not None:
                assert section is not None
                if _is_line_continuation(line):
                    continuation += line.rstrip(b"\r\n")[:-1]
                    continue
                ret._section(section).add(setting, _parse_string(continuation + line))
                setting = None
                continue
            line = line.lstrip()
            if line[:1] == b"[":
                section, line = _parse_section_header_line(line)
                ret._section(section, create=True)
            if _strip_comments(line).strip() == b"":
                continue
            if section is None:
                raise ValueError(f"setting {line!r} without section")
            try:
                name, value = line.split(b"=", 1)
            except ValueError:
                # A name without a value is a boolean true
                name = _strip_comments(line)
                value = b"true"
            name = name.strip()
            if not _check_variable_name(name):
                raise ValueError(f"invalid variable name {name!r}")
            if _is_line_continuation(value):
                setting = name
                continuation = value.rstrip(b"\r\n")[:-1]
                continue
            ret._section(section).add(name, _parse_string(value))
        if setting is not None:
            raise ValueError("unterminated line continuation")
        return ret

    @classmethod
    def from_path(cls, path: Union[str, "os.PathLike[str]"]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with open(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret


def get_xdg_config_home_path(*path_segments: str) -> str:
    """Get a path in the XDG config home directory."""
    xdg_config_home = os.environ.get(
        "XDG_CONFIG_HOME",
        os.path.expanduser("~/.config/"),
    )
    return os.path.join(xdg_config_home, *path_segments)


class StackedConfig(Config):
    """Configuration which reads from multiple config files."""

    def __init__(
        self, backends: Iterable[Config], writable: Optional[ConfigFile] = None
    ) -> None:
        """Initialize a StackedConfig.

        Args:
          backends: Configs to read from, in order of precedence
          writable: Optional config file to write changes to
        """
        self.backends = list(backends)
        self.writable = writable

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} for {self.backends!r}>"

    @classmethod
    def default(cls) -> "StackedConfig":
        """Create a StackedConfig from the user and system config files."""
        return cls(cls.default_backends())

    @classmethod
    def default_backends(cls) -> list[ConfigFile]:
        """Load the global and system config files, highest precedence first.

        ``GIT_CONFIG_GLOBAL`` replaces ``~/.gitconfig`` and the XDG config
        file; ``GIT_CONFIG_SYSTEM`` replaces ``/etc/gitconfig``, which
        ``GIT_CONFIG_NOSYSTEM`` skips. Missing files are ignored.
        """
        global_config = os.environ.get("GIT_CONFIG_GLOBAL")
        if global_config is not None:
            paths = [global_config]
        else:
            paths = [
                os.path.expanduser("~/.gitconfig"),
                get_xdg_config_home_path("git", "config"),
            ]
        system_config = os.environ.get("GIT_CONFIG_SYSTEM")
        if system_config is not None:
            paths.append(system_config)
        elif "GIT_CONFIG_NOSYSTEM" not in os.environ:
            paths.append("/etc/gitconfig")

        backends = []
        for path in paths:
            if not os.path.isfile(path):
                continue
            logger.debug("loaded gitconfig from %s", path)
            backends.append(ConfigFile.from_path(path))
        return backends

    def get(self, section: SectionLike, name: NameLike) -> Value:
        for backend in self.backends:
            try:
                return backend.get(section, name)
            except KeyError:
                continue
        raise KeyError(name)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        for backend in self.backends:
            try:
                values = list(backend.get_multivar(section, name))
            except KeyError:
                continue
            yield from values

    def set(self, section: SectionLike, name: NameLike, value: Union[ValueLike, bool]) -> None:
        if self.writable is None:
            raise NotImplementedError(self.set)
        return self.writable.set(section, name, value)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        seen = set()
        for backend in self.backends:
            for name, value in backend.items(section):
                if name.lower() not in seen:
                    seen.add(name.lower())
                    yield name, value

    def sections(self) -> Iterator[Section]:
        seen = set()
        for backend in self.backends:
            for section in backend.sections():
                if lower_key(section) not in seen:
                    seen.add(lower_key(section))
                    yield section


def _get_default_identity() -> tuple[str, str]:
    import socket

    for name in ("LOGNAME", "USER", "LNAME", "USERNAME"):
        username = os.environ.get(name)
        if username:
            break
    else:
        username = None

    fullname = None
    try:
        import pwd
    except ImportError:
        pass
    else:
        try:
            entry = pwd.getpwuid(os.getuid())
        except KeyError:
            pass
        else:
            if entry.pw_gecos:
                fullname = entry.pw_gecos.split(",")[0]
            if username is None:
                username = entry.pw_name
    if username is None:
        username = "unknown"
    if not fullname:
        fullname = username
    email = os.environ.get("EMAIL")
    if email is None:
        email = f"{username}@{socket.gethostname()}"
    return (fullname, email)


def _identity_part(config: Config, kind: Optional[str], field: str) -> Optional[bytes]:
    if kind:
        value = os.environ.get(f"GIT_{kind}_{field.upper()}")
        if value is not None:
            return value.encode("utf-8")
    try:
        return config.get(("user",), field)
    except KeyError:
        return None


def get_user_identity(config: Config, kind: Optional[str] = None) -> bytes:
    """Determine the identity to use for new commits.

    ``GIT_<KIND>_NAME`` and ``GIT_<KIND>_EMAIL`` win when kind is given
    (usually ``"AUTHOR"`` or ``"COMMITTER"``), then ``user.name`` and
    ``user.email`` from config, then the login account.

    Returns:
      A user identity, ``b"Name <email>"``
    """
    user = _identity_part(config, kind, "name")
    email = _identity_part(config, kind, "email")
    if user is None or email is None:
        default_user, default_email = _get_default_identity()
        if user is None:
            user = default_user.encode("utf-8")
        if email is None:
            email = default_email.encode("utf-8")
    if email.startswith(b"<") and email.endswith(b">"):
        email = email[1:-1]
    return user + b" <" + email + b">"
