# transport.py -- Byte stream transports for the git protocols
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

"""Transports: ways of obtaining a duplex stream to a git service.

A transport only moves bytes; all protocol handling happens in
:mod:`gitstream.client`. Each call to :meth:`Transport.open` starts a new
session with ``git-upload-pack`` or ``git-receive-pack`` on the remote and
returns a :class:`Protocol` for it.

Currently available transports:

* StreamTransport: caller supplied read and write functions
* SubprocessTransport: a local git binary
* SSHTransport: git over the local ``ssh`` command
* HttpTransport: git's smart HTTP protocol, through urllib3
"""

import logging
import os
import shlex
import subprocess
from collections.abc import Callable
from io import BufferedReader, BytesIO
from typing import TYPE_CHECKING, Optional, Union
from urllib.parse import unquote, urljoin, urlparse

from .config import Config, StackedConfig
from .errors import ProtocolError, TransportError
from .protocol import Protocol, agent_string, parse_pkt_length

if TYPE_CHECKING:
    import urllib3

logger = logging.getLogger(__name__)

UPLOAD_PACK_SERVICE = b"git-upload-pack"
RECEIVE_PACK_SERVICE = b"git-receive-pack"
SERVICES = (UPLOAD_PACK_SERVICE, RECEIVE_PACK_SERVICE)

# Fetches ask for protocol version 2; pushes use version 1.
GIT_PROTOCOL_V2 = "version=2"


def _check_service(service: bytes) -> None:
    if service not in SERVICES:
        raise ValueError(f"unknown service {service!r}")


def _protocol_version_for(service: bytes) -> Optional[str]:
    if service == UPLOAD_PACK_SERVICE:
        return GIT_PROTOCOL_V2
    return None


class Transport:
    """A way of reaching a remote repository."""

    def open(self, service: bytes) -> Protocol:
        """Start a session with a git service on the remote.

        Args:
          service: ``git-upload-pack`` or ``git-receive-pack``
        Returns: A Protocol connected to the service; the caller closes it
        Raises:
          TransportError: if the session can not be established
        """
        raise NotImplementedError(self.open)


class StreamTransport(Transport):
    """Transport over caller supplied read and write functions.

    Every session shares the same stream, which is mostly useful for tests
    and for callers that establish their own channel.
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        write: Callable[[bytes], object],
        close: Optional[Callable[[], None]] = None,
    ) -> None:
        self._read = read
        self._write = write
        self._close = close

    def open(self, service: bytes) -> Protocol:
        _check_service(service)
        return Protocol(self._read, self._write, self._close)


class SubprocessWrapper:
    """A socket-like object that talks to a subprocess via pipes."""

    def __init__(self, proc: "subprocess.Popen[bytes]") -> None:
        """Initialize a SubprocessWrapper.

        Args:
          proc: Subprocess.Popen instance to wrap
        """
        self.proc = proc
        assert proc.stdout is not None
        assert proc.stdin is not None
        self.read = BufferedReader(proc.stdout).read  # type: ignore[arg-type]
        self.write = proc.stdin.write

    def stderr_lines(self) -> list[bytes]:
        """Return whatever the subprocess wrote to stderr, once it exited."""
        if self.proc.stderr is None or self.proc.stderr.closed:
            return []
        try:
            self.proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            return []
        return self.proc.stderr.read().splitlines()

    def close(self, timeout: Optional[int] = 60) -> None:
        """Close the subprocess and wait for it to terminate.

        Raises:
          TransportError: If the subprocess doesn't terminate within timeout
        """
        for f in (self.proc.stdin, self.proc.stdout, self.proc.stderr):
            if f is not None:
                try:
                    f.close()
                except BrokenPipeError:
                    pass
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self.proc.kill()
            self.proc.wait()
            raise TransportError(
                f"git subprocess did not terminate within {timeout} seconds; killed it."
            ) from e

    def protocol(self) -> Protocol:
        proto = Protocol(self.read, self.write, self.close)
        proto.stderr_lines = self.stderr_lines
        return proto


def _spawn(argv: list[str], env: Optional[dict[str, str]] = None) -> SubprocessWrapper:
    logger.debug("running %s", " ".join(shlex.quote(arg) for arg in argv))
    try:
        proc = subprocess.Popen(
            argv,
            bufsize=0,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        raise TransportError(f"unable to run {argv[0]}: {e}") from e
    return SubprocessWrapper(proc)


class SubprocessTransport(Transport):
    """Transport that runs a local git binary against a repository path."""

    def __init__(self, path: Union[str, bytes], git_command: str = "git") -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        self.path = path
        self.git_command = git_command

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    def open(self, service: bytes) -> Protocol:
        _check_service(service)
        env = dict(os.environ)
        version = _protocol_version_for(service)
        if version is not None:
            env["GIT_PROTOCOL"] = version
        argv = [
            *shlex.split(self.git_command),
            service.decode("ascii")[len("git-") :],
            self.path,
        ]
        return _spawn(argv, env).protocol()


class StrangeHostname(TransportError):
    """Refusing to connect to strange SSH hostname."""

    def __init__(self, hostname: str) -> None:
        super().__init__(f"refusing to connect to strange host name {hostname!r}")
        self.hostname = hostname


class SSHVendor:
    """A client side SSH implementation."""

    def run_command(
        self,
        host: str,
        command: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[str] = None,
    ) -> SubprocessWrapper:
        """Run a command remotely and return a wrapper to interact with it.

        Args:
          host: Host name
          command: Command to run
          username: Optional name of user to log in as
          port: Optional SSH port to use
          key_filename: Optional path to private keyfile
          ssh_command: Optional SSH command
          protocol_version: Value for GIT_PROTOCOL on the remote, if any
        """
        raise NotImplementedError(self.run_command)


class SubprocessSSHVendor(SSHVendor):
    """SSH vendor that shells out to the local 'ssh' command."""

    def run_command(
        self,
        host: str,
        command: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[str] = None,
    ) -> SubprocessWrapper:
        if ssh_command:
            args = [*shlex.split(ssh_command), "-x"]
        else:
            args = ["ssh", "-x"]

        if port:
            args.extend(["-p", str(port)])

        if key_filename:
            args.extend(["-i", str(key_filename)])

        if protocol_version is not None:
            args.extend(["-o", f"SetEnv GIT_PROTOCOL={protocol_version}"])

        if username:
            host = f"{username}@{host}"
        if host.startswith("-"):
            raise StrangeHostname(host)
        args.append(host)

        return _spawn([*args, command])


class SSHTransport(Transport):
    """Transport that runs the git service on a remote host over SSH."""

    def __init__(
        self,
        host: str,
        path: Union[str, bytes],
        username: Optional[str] = None,
        port: Optional[int] = None,
        ssh_command: Optional[str] = None,
        key_filename: Optional[str] = None,
        config: Optional[Config] = None,
        vendor: Optional[SSHVendor] = None,
    ) -> None:
        """Initialize an SSHTransport.

        Args:
          host: Host to connect to
          path: Path of the repository on the host
          username: Optional user name
          port: Optional port
          ssh_command: SSH command line; defaults to GIT_SSH_COMMAND, then
            core.sshCommand from config, then ``ssh``
          key_filename: Optional private key file
          config: Configuration to read core.sshCommand from
          vendor: SSH implementation to use
        """
        if isinstance(path, bytes):
            path = path.decode("utf-8")
        self.host = host
        self.path = path
        self.username = username
        self.port = port
        self.key_filename = key_filename
        if ssh_command is None:
            ssh_command = os.environ.get("GIT_SSH_COMMAND")
        if ssh_command is None and config is not None:
            try:
                ssh_command = config.get((b"core",), b"sshCommand").decode("utf-8")
            except KeyError:
                pass
        self.ssh_command = ssh_command
        self.vendor = vendor if vendor is not None else SubprocessSSHVendor()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.host!r}, {self.path!r})"

    def open(self, service: bytes) -> Protocol:
        _check_service(service)
        path = self.path
        if path.startswith("/~"):
            path = path[1:]
        command = service.decode("ascii") + " " + shlex.quote(path)
        con = self.vendor.run_command(
            self.host,
            command,
            username=self.username,
            port=self.port,
            key_filename=self.key_filename,
            ssh_command=self.ssh_command,
            protocol_version=_protocol_version_for(service),
        )
        return con.protocol()


def default_user_agent_string() -> str:
    # GitHub requires user agents to start with "git/".
    return "git/" + agent_string().decode("ascii")


def default_urllib3_manager(
    config: Optional[Config],
    base_url: Optional[str] = None,
    pool_manager_cls: Optional[type] = None,
    proxy_manager_cls: Optional[type] = None,
) -> Union["urllib3.ProxyManager", "urllib3.PoolManager"]:
    """Return urllib3 connection pool manager.

    Honours http.proxy (or the usual proxy environment variables),
    http.useragent, http.sslVerify and http.sslCAInfo.

    Args:
      config: Configuration to read http settings from
      base_url: URL the manager will be used for, for no_proxy checks
      pool_manager_cls: Pool manager class to use
      proxy_manager_cls: Proxy manager class to use
    """
    import urllib3

    proxy_server: Optional[str] = None
    user_agent: Optional[str] = None
    ca_certs: Optional[str] = None
    ssl_verify = True

    if config is not None:
        try:
            proxy_server = config.get(b"http", b"proxy").decode("utf-8")
        except KeyError:
            pass
        try:
            user_agent = config.get(b"http", b"useragent").decode("utf-8")
        except KeyError:
            pass
        ssl_verify = bool(config.get_boolean(b"http", b"sslVerify", True))
        try:
            ca_certs = config.get(b"http", b"sslCAInfo").decode("utf-8")
        except KeyError:
            pass

    if not proxy_server:
        for proxyname in ("https_proxy", "http_proxy", "all_proxy"):
            proxy_server = os.environ.get(proxyname) or os.environ.get(
                proxyname.upper()
            )
            if proxy_server:
                break
    if proxy_server and check_for_proxy_bypass(base_url):
        proxy_server = None

    if user_agent is None:
        user_agent = default_user_agent_string()

    headers = {"User-agent": user_agent}
    kwargs: dict[str, Optional[str]] = {
        "ca_certs": ca_certs,
        "cert_reqs": "CERT_REQUIRED" if ssl_verify else "CERT_NONE",
    }

    if proxy_server:
        if proxy_manager_cls is None:
            proxy_manager_cls = urllib3.ProxyManager
        proxy_url = urlparse(proxy_server)
        if proxy_url.username is not None:
            proxy_headers = urllib3.make_headers(
                proxy_basic_auth=f"{proxy_url.username}:{proxy_url.password or ''}"
            )
        else:
            proxy_headers = {}
        return proxy_manager_cls(
            proxy_server, proxy_headers=proxy_headers, headers=headers, **kwargs
        )
    if pool_manager_cls is None:
        pool_manager_cls = urllib3.PoolManager
    return pool_manager_cls(headers=headers, **kwargs)


def check_for_proxy_bypass(base_url: Optional[str]) -> bool:
    """Check whether no_proxy says the proxy should be skipped for base_url."""
    if not base_url:
        return False
    no_proxy_str = os.environ.get("no_proxy") or os.environ.get("NO_PROXY")
    if not no_proxy_str:
        return False
    hostname = urlparse(base_url).hostname
    if not hostname:
        return False
    for value in no_proxy_str.split(","):
        value = value.strip().lower().lstrip(".")
        if not value:
            continue
        if value == "*" or hostname == value or hostname.endswith("." + value):
            return True
    return False


class _HttpSession:
    """Stateless-RPC session with one git service over smart HTTP.

    Requests written through the protocol are buffered and POSTed as a
    whole when the client next reads, at which point the body of the
    response becomes the read stream.
    """

    def __init__(self, transport: "HttpTransport", service: bytes) -> None:
        self.transport = transport
        self.service = service.decode("ascii")
        self._request = BytesIO()
        self._response: Optional["urllib3.BaseHTTPResponse"] = None
        self._pending = b""

    def _headers(self, extra: dict[str, str]) -> dict[str, str]:
        headers = dict(extra)
        headers["Pragma"] = "no-cache"
        version = _protocol_version_for(self.service.encode("ascii"))
        if version is not None:
            headers["Git-Protocol"] = version
        return headers

    def _request_url(
        self, method: str, url: str, headers: dict[str, str], body: Optional[bytes] = None
    ) -> "urllib3.BaseHTTPResponse":
        import urllib3.exceptions

        logger.debug("%s %s", method, url)
        try:
            resp = self.transport.pool_manager.request(
                method,
                url,
                headers=self._headers(headers),
                body=body,
                preload_content=False,
            )
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(str(e)) from e
        if resp.status == 404:
            raise TransportError(f"repository not found: {url}")
        if resp.status in (401, 403):
            raise TransportError(f"authentication failed for {url}")
        if resp.status != 200:
            raise TransportError(f"unexpected http resp {resp.status} for {url}")
        return resp

    def _set_response(self, resp: "urllib3.BaseHTTPResponse", content_type: str) -> None:
        actual = resp.headers.get("Content-Type", "")
        if actual.split(";")[0].strip() != content_type:
            resp.release_conn()
            raise ProtocolError(f"invalid content-type from server: {actual}")
        if self._response is not None:
            self._response.release_conn()
        self._response = resp

    def discover(self) -> None:
        """Fetch the initial advertisement from info/refs."""
        url = urljoin(self.transport.base_url, "info/refs?service=" + self.service)
        resp = self._request_url("GET", url, {"Accept": "*/*"})
        self._set_response(resp, f"application/x-{self.service}-advertisement")
        self._skip_service_preamble()

    def _raw_read(self, size: int) -> bytes:
        import urllib3.exceptions

        if self._response is None:
            return b""
        try:
            return self._response.read(size)
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(str(e)) from e

    def _skip_service_preamble(self) -> None:
        # Smart HTTP advertisements start with "# service=<name>" and a flush.
        head = self._raw_read(4)
        if len(head) < 4:
            self._pending = head
            return
        size = parse_pkt_length(head)
        if size < 4:
            self._pending = head
            return
        payload = self._raw_read(size - 4)
        if payload.rstrip(b"\n") != b"# service=" + self.service.encode("ascii"):
            self._pending = head + payload
            return
        flush = self._raw_read(4)
        if flush != b"0000":
            raise ProtocolError(f"expected flush after service line, got {flush!r}")

    def write(self, data: bytes) -> None:
        self._request.write(data)

    def read(self, size: int) -> bytes:
        if self._request.tell():
            body = self._request.getvalue()
            self._request = BytesIO()
            url = urljoin(self.transport.base_url, self.service)
            result_type = f"application/x-{self.service}-result"
            resp = self._request_url(
                "POST",
                url,
                {
                    "Content-Type": f"application/x-{self.service}-request",
                    "Accept": result_type,
                },
                body,
            )
            self._set_response(resp, result_type)
            self._pending = b""
        if self._pending:
            ret, self._pending = self._pending[:size], self._pending[size:]
            return ret
        return self._raw_read(size)

    def close(self) -> None:
        if self._response is not None:
            self._response.release_conn()
            self._response = None


class HttpTransport(Transport):
    """Transport speaking git's smart HTTP protocol through urllib3."""

    def __init__(
        self,
        url: str,
        config: Optional[Config] = None,
        pool_manager: Optional["urllib3.PoolManager"] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        """Initialize an HttpTransport.

        Args:
          url: Base URL of the repository
          config: Configuration to read http settings from
          pool_manager: urllib3 pool manager to use instead of a default one
          username: Optional user name for basic authentication
          password: Optional password for basic authentication
        """
        parsed = urlparse(url)
        if username is None and parsed.username is not None:
            username = parsed.username
            password = parsed.password
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc += f":{parsed.port}"
            url = parsed._replace(netloc=netloc).geturl()
        self.base_url = url.rstrip("/") + "/"
        if pool_manager is None:
            pool_manager = default_urllib3_manager(config, base_url=self.base_url)
        self.pool_manager = pool_manager
        if username is not None:
            import urllib3.util

            # No escaping needed: ":" is not allowed in username
            basic_auth = urllib3.util.make_headers(
                basic_auth=f"{username}:{password or ''}"
            )
            self.pool_manager.headers.update(basic_auth)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.base_url!r})"

    def open(self, service: bytes) -> Protocol:
        _check_service(service)
        session = _HttpSession(self, service)
        session.discover()
        return Protocol(session.read, session.write, session.close)


def _parse_scp_location(location: str) -> Optional[tuple[Optional[str], str, str]]:
    """Parse ``[user@]host:path``; None if location is not of that form."""
    if ":" not in location or "://" in location:
        return None
    host, path = location.split(":", 1)
    if "/" in host or not host or os.path.exists(location):
        return None
    username: Optional[str] = None
    if "@" in host:
        username, host = host.rsplit("@", 1)
    return username, host, path


def get_transport(url: str, config: Optional[Config] = None) -> Transport:
    """Obtain a transport for a repository URL.

    Supported are ``http://``, ``https://``, ``ssh://``, scp-style
    ``user@host:path``, ``file://`` and plain local paths.

    Raises:
      ValueError: for unsupported URL schemes
    """
    if config is None:
        config = StackedConfig.default()
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        return HttpTransport(url, config=config)
    if parsed.scheme in ("ssh", "git+ssh"):
        assert parsed.hostname is not None
        return SSHTransport(
            parsed.hostname,
            unquote(parsed.path),
            username=parsed.username,
            port=parsed.port,
            config=config,
        )
    if parsed.scheme == "file":
        return SubprocessTransport(parsed.path)
    scp = _parse_scp_location(url)
    if scp is not None:
        username, host, path = scp
        return SSHTransport(host, path, username=username, config=config)
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"unsupported URL scheme {parsed.scheme!r}")
    return SubprocessTransport(url)
