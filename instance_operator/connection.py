"""Connection strings shown to players, derived from observed Service/Ingress state."""


def format_http(hostname, terminal=False, tls=False):
    if not hostname:
        return ""
    scheme = "https" if tls else "http"
    if terminal:
        return f"Challenge: {scheme}://{hostname}\nTerminal: {scheme}://{hostname}/terminal"
    return f"{scheme}://{hostname}"


def _load_balancer_host(service):
    status = service.status
    if not status or not status.load_balancer or not status.load_balancer.ingress:
        return None
    ingress = status.load_balancer.ingress[0]
    return ingress.ip or ingress.hostname


def resolve(service, node_ip, hostname="", terminal=False, tls=False):
    """Return the connection string for a live Service, or "" while it is not determinable.

    NodePort needs an assigned node port, LoadBalancer an assigned address and
    Ingress-routed instances the rule hostname. ClusterIP services are not
    reachable from outside and resolve to "".
    """
    if hostname:
        return format_http(hostname, terminal=terminal, tls=tls)
    if service is None or service.spec is None or not service.spec.ports:
        return ""

    port = service.spec.ports[0]
    if service.spec.type == "NodePort":
        if port.node_port:
            return f"nc {node_ip} {port.node_port}"
    elif service.spec.type == "LoadBalancer":
        host = _load_balancer_host(service)
        if host:
            return f"nc {host} {port.port}"
    return ""
