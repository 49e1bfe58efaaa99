"""Unit tests for connection info resolution."""

import pytest

pytest.importorskip("kubernetes")

from kubernetes import client

from instance_operator.connection import format_http, resolve


def service(type_, port=8080, node_port=None, lb_ip=None, lb_hostname=None):
    status = None
    if lb_ip or lb_hostname:
        status = client.V1ServiceStatus(load_balancer=client.V1LoadBalancerStatus(
            ingress=[client.V1LoadBalancerIngress(ip=lb_ip, hostname=lb_hostname)],
        ))
    return client.V1Service(
        spec=client.V1ServiceSpec(
            type=type_,
            ports=[client.V1ServicePort(port=port, node_port=node_port)],
        ),
        status=status,
    )


class TestResolve:
    def test_node_port(self):
        assert resolve(service("NodePort", node_port=31337), "10.0.0.5") == "nc 10.0.0.5 31337"

    def test_node_port_not_assigned_yet(self):
        assert resolve(service("NodePort"), "10.0.0.5") == ""

    def test_load_balancer_ip(self):
        assert resolve(service("LoadBalancer", lb_ip="203.0.113.7"), "10.0.0.5") == "nc 203.0.113.7 8080"

    def test_load_balancer_hostname(self):
        svc = service("LoadBalancer", lb_hostname="lb.example.com")
        assert resolve(svc, "10.0.0.5") == "nc lb.example.com 8080"

    def test_load_balancer_pending(self):
        assert resolve(service("LoadBalancer"), "10.0.0.5") == ""

    def test_cluster_ip_is_not_reachable(self):
        assert resolve(service("ClusterIP"), "10.0.0.5") == ""

    def test_missing_service(self):
        assert resolve(None, "10.0.0.5") == ""

    def test_hostname_wins(self):
        svc = service("NodePort", node_port=31337)
        assert resolve(svc, "10.0.0.5", hostname="web.ctf.io") == "http://web.ctf.io"


class TestFormatHttp:
    def test_plain(self):
        assert format_http("web.ctf.io") == "http://web.ctf.io"

    def test_tls(self):
        assert format_http("web.ctf.io", tls=True) == "https://web.ctf.io"

    def test_terminal(self):
        assert format_http("web.ctf.io", terminal=True) == (
            "Challenge: http://web.ctf.io\nTerminal: http://web.ctf.io/terminal"
        )

    def test_empty_hostname(self):
        assert format_http("", terminal=True) == ""
