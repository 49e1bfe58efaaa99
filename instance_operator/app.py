"""Flask application serving the CTFd-compatible gateway."""

import logging
import os
from collections import namedtuple

from flask import Flask, current_app, request

from .config import Settings
from .routes import EXTENSION, instances_blueprint
from .runtime import ClusterClient

logger = logging.getLogger("instance_operator.gateway")

GatewayContext = namedtuple("GatewayContext", "cluster settings")


def _cors(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Accept, Authorization, Content-Type, X-CSRF-Token"
    return response


def _preflight():
    if request.method == "OPTIONS":
        return current_app.make_default_options_response()
    return None


def load(app, cluster=None, settings=None):
    """Register the gateway on ``app``; settings in ``app.config`` override the environment."""
    settings = (settings or Settings.from_env()).with_overrides(app.config)
    if cluster is None:
        cluster = ClusterClient.from_config()
    app.extensions[EXTENSION] = GatewayContext(cluster=cluster, settings=settings)
    app.register_blueprint(instances_blueprint)
    app.before_request(_preflight)
    app.after_request(_cors)
    return app


def create_app(cluster=None, settings=None, config=None):
    app = Flask("instance_operator")
    if config:
        app.config.update(config)
    return load(app, cluster=cluster, settings=settings)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    port = int(os.getenv("PORT", "8080"))
    settings = app.extensions[EXTENSION].settings
    logger.info("API gateway starting", extra={"port": port, "namespace": settings.namespace})
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
