"""Pytest configuration and fixtures."""

import ftplib
import posixpath

import pytest
from pydantic import SecretStr

from kb_publish.config import DeployConfig, DeployTarget, FtpSettings


class FakeFtpServer:
    """In-memory FTP server shared by every FakeFTP connection."""

    def __init__(self, user="deployer", password="s3cret", supports_mlsd=True):
        self.user = user
        self.password = password
        self.supports_mlsd = supports_mlsd
        self.dirs = {"/"}
        self.files = {}
        self.failures = {}
        self.connections = []
        self.commands = []

    def add_file(self, path, data):
        parent = posixpath.dirname(path)
        parts = [p for p in parent.split("/") if p]
        current = ""
        for part in parts:
            current = f"{current}/{part}"
            self.dirs.add(current)
        self.files[path] = data

    def children(self, path):
        names = set()
        for p in list(self.dirs) + list(self.files):
            if p != path and posixpath.dirname(p) == path:
                names.add(p)
        return sorted(names)

    def fail(self, method, *errors):
        self.failures.setdefault(method, []).extend(errors)

    def maybe_fail(self, method):
        queue = self.failures.get(method)
        if queue:
            raise queue.pop(0)

    def factory(self, secure):
        conn = FakeFTP(self, secure)
        self.connections.append(conn)
        return conn


class FakeFTP:
    def __init__(self, server, secure):
        self.server = server
        self.secure = secure
        self.logged_in = False
        self.protected = False
        self.passive = None
        self.closed = False
        self.quit_called = False
        self.cwd_path = "/"

    def _record(self, method, *args):
        self.server.commands.append((method,) + args)
        self.server.maybe_fail(method)

    def connect(self, host, port, timeout=None):
        self._record("connect", host, port)

    def login(self, user, passwd):
        self._record("login", user)
        if user != self.server.user or passwd != self.server.password:
            raise ftplib.error_perm("530 Login incorrect.")
        self.logged_in = True

    def prot_p(self):
        self._record("prot_p")
        self.protected = True

    def set_pasv(self, val):
        self.passive = val

    def pwd(self):
        self._record("pwd")
        return self.cwd_path

    def cwd(self, path):
        self._record("cwd", path)
        if path not in self.server.dirs:
            raise ftplib.error_perm(f"550 {path}: No such directory")
        self.cwd_path = path

    def mkd(self, path):
        self._record("mkd", path)
        if path in self.server.dirs or path in self.server.files:
            raise ftplib.error_perm(f"550 {path}: File exists")
        if posixpath.dirname(path) not in self.server.dirs:
            raise ftplib.error_perm(f"550 {path}: No such directory")
        self.server.dirs.add(path)
        return path

    def storbinary(self, cmd, fp, blocksize=8192, callback=None, rest=None):
        path = cmd.split(" ", 1)[1]
        self._record("storbinary", path)
        if posixpath.dirname(path) not in self.server.dirs:
            raise ftplib.error_perm(f"553 {path}: No such directory")
        self.server.files[path] = fp.read()
        return "226 Transfer complete."

    def retrbinary(self, cmd, callback, blocksize=8192, rest=None):
        path = cmd.split(" ", 1)[1]
        self._record("retrbinary", path)
        if path not in self.server.files:
            raise ftplib.error_perm(f"550 {path}: No such file")
        callback(self.server.files[path])
        return "226 Transfer complete."

    def mlsd(self, path="", facts=[]):
        self._record("mlsd", path)
        if not self.server.supports_mlsd:
            raise ftplib.error_perm("500 MLSD not understood")
        if path not in self.server.dirs:
            raise ftplib.error_perm(f"550 {path}: No such directory")
        yield ".", {"type": "cdir"}
        yield "..", {"type": "pdir"}
        for child in self.server.children(path):
            name = posixpath.basename(child)
            if child in self.server.dirs:
                yield name, {"type": "dir"}
            else:
                yield name, {
                    "type": "file",
                    "size": str(len(self.server.files[child])),
                }

    def nlst(self, *args):
        path = args[0] if args else self.cwd_path
        self._record("nlst", path)
        if path not in self.server.dirs:
            raise ftplib.error_perm(f"550 {path}: No such directory")
        children = self.server.children(path)
        if not children:
            raise ftplib.error_perm("550 No files found")
        return children

    def delete(self, path):
        self._record("delete", path)
        if path not in self.server.files:
            raise ftplib.error_perm(f"550 {path}: No such file")
        del self.server.files[path]

    def rmd(self, path):
        self._record("rmd", path)
        if path not in self.server.dirs:
            raise ftplib.error_perm(f"550 {path}: No such directory")
        if self.server.children(path):
            raise ftplib.error_perm(f"550 {path}: Directory not empty")
        self.server.dirs.discard(path)

    def quit(self):
        self._record("quit")
        self.quit_called = True
        self.closed = True

    def close(self):
        self.closed = True


@pytest.fixture
def ftp_server():
    return FakeFtpServer()


@pytest.fixture
def ftp_settings(ftp_server):
    return FtpSettings(host="ftp.example.com", user=ftp_server.user, password=ftp_server.password)


@pytest.fixture
def build_dir(tmp_path):
    """A small site build: index page, nested assets, and a content page."""
    root = tmp_path / "dist"
    (root / "assets").mkdir(parents=True)
    (root / "content" / "community").mkdir(parents=True)
    (root / "index.html").write_text(
        '<html><head><title>KB</title></head><body></body></html>', encoding="utf-8"
    )
    (root / "assets" / "app.js").write_bytes(b"console.log('kb');\n")
    (root / "content" / "community" / "contributing.md").write_text(
        "# Contributing\n", encoding="utf-8"
    )
    return root


@pytest.fixture
def deploy_config(build_dir, ftp_server):
    return DeployConfig(
        target=DeployTarget.DEFAULT,
        host="ftp.example.com",
        user=ftp_server.user,
        password=SecretStr(ftp_server.password),
        remote_path="/public_html",
        local_path=build_dir,
    )


@pytest.fixture
def project_root(tmp_path):
    """Checkout root with no recently-modified dependency files."""
    root = tmp_path / "project"
    root.mkdir()
    return root
