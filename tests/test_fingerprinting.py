import socket

from lanscout.scanner.fingerprinting import fingerprint_service, identify_banner


def test_openssh_banner():
    info = identify_banner(22, "SSH-2.0-OpenSSH_9.2p1 Debian-2")
    assert (info.service, info.software, info.version) == ("ssh", "openssh", "9.2p1")
    assert info.confidence == "high"


def test_http_server_header():
    info = identify_banner(80, "HTTP/1.1 200 OK\r\nServer: nginx/1.24.0\r\n")
    assert info.service == "http"
    assert info.software == "nginx"
    assert info.version == "1.24.0"


def test_mysql_falls_back_on_port():
    info = identify_banner(3306, "J\x00\x00\x00\n8.0.36")
    assert info.service == "mysql"
    assert info.version == "8.0.36"


def test_unknown_banner_keeps_port_label():
    info = identify_banner(9999, "hello")
    assert info.service == "tcp/9999"
    assert info.banner == "hello"


def test_fingerprint_never_raises_on_refused_connection(monkeypatch):
    class Refusing:
        def __init__(self, *args):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def settimeout(self, value):
            pass

        def connect(self, address):
            raise ConnectionRefusedError(111, "refused")

    monkeypatch.setattr(socket, "socket", Refusing)
    info = fingerprint_service("10.0.0.1", 22, timeout=0.1)
    assert info.service == "tcp/22"
    assert info.banner == ""
