import subprocess

import vpnguard.interfaces as interfaces
from vpnguard.interfaces import InterfaceSnapshot, InterfaceReader, PhysicalNetwork

IFCONFIG = """\
lo0: flags=8049<UP,LOOPBACK,RUNNING,MULTICAST> mtu 16384
\toptions=1203<RXCSUM,TXCSUM,TXSTATUS,SW_TIMESTAMP>
\tinet 127.0.0.1 netmask 0xff000000
\tinet6 ::1 prefixlen 128
en0: flags=8863<UP,BROADCAST,SMART,RUNNING,SIMPLEX,MULTICAST> mtu 1500
\tether 3c:22:fb:00:11:22
\tinet 192.168.1.10 netmask 0xffffff00 broadcast 192.168.1.255
\tstatus: active
en1: flags=8863<UP,BROADCAST,SMART,RUNNING,SIMPLEX,MULTICAST> mtu 1500
\tstatus: inactive
utun0: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1380
\tinet6 fe80::1%utun0 prefixlen 64 scopeid 0xc
utun10: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1420
\tinet 10.10.0.3 --> 10.10.0.3 netmask 0xffffffff
utun2: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1420
\tinet 10.2.0.9 --> 10.2.0.9 netmask 0xffffffff
"""

ROUTE_GET = """\
   route to: default
destination: default
       mask: default
    gateway: 192.168.1.1
  interface: en0
"""


def test_parse_collects_ipv4_addresses_per_interface():
    snapshot = InterfaceSnapshot.parse(IFCONFIG)

    assert snapshot.addresses["lo0"] == ["127.0.0.1"]
    assert snapshot.address_of("en0") == "192.168.1.10"
    assert snapshot.address_of("en1") is None
    assert snapshot.address_of("lo0") is None
    assert snapshot.address_of("missing") is None


def test_tunnels_sorted_naturally_and_require_an_address():
    snapshot = InterfaceSnapshot.parse(IFCONFIG)

    assert snapshot.tunnels(["utun"]) == [("utun2", "10.2.0.9"), ("utun10", "10.10.0.3")]
    assert snapshot.chosen_tunnel(["utun"]) == ("utun2", "10.2.0.9")
    assert InterfaceSnapshot().chosen_tunnel(["utun"]) is None


def test_physical_network_uses_first_candidate_with_address_and_gateway(monkeypatch):
    def fake_run(command, **kwargs):
        if command == ["ifconfig"]:
            return subprocess.CompletedProcess(command, 0, stdout=IFCONFIG, stderr="")
        if command[-2:] == ["en0", "default"]:
            return subprocess.CompletedProcess(command, 0, stdout=ROUTE_GET, stderr="")
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="not in table")

    monkeypatch.setattr(interfaces, "run_command", fake_run)

    network = InterfaceReader().physical_network(["en1", "en0", "en2"])

    assert network == PhysicalNetwork("en0", "192.168.1.10", "192.168.1.1")
    assert str(network) == "en0:192.168.1.10:192.168.1.1"


def test_physical_network_none_without_gateway(monkeypatch):
    def fake_run(command, **kwargs):
        if command == ["ifconfig"]:
            return subprocess.CompletedProcess(command, 0, stdout=IFCONFIG, stderr="")
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="not in table")

    monkeypatch.setattr(interfaces, "run_command", fake_run)

    assert InterfaceReader().physical_network(["en0", "en1"]) is None
