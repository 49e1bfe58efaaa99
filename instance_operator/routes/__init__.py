from .instances import EXTENSION, instances_blueprint

__all__ = ["EXTENSION", "instances_blueprint"]
