"""Exceptions raised by the instance operator."""


class InstanceOperatorError(Exception):
    """Base class for operator errors."""


class TemplateRenderError(InstanceOperatorError):
    """A flag or hostname template failed to parse or render."""


class PayloadError(InstanceOperatorError):
    """A gateway request body could not be normalized."""
