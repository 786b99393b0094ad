class GhRelayException(Exception):
    status_code = 500
    public_message = "Internal Server Error"


class ConfigurationException(GhRelayException):
    pass


class InvalidURLException(GhRelayException):
    status_code = 400
    public_message = "Invalid URL"


class ForbiddenException(GhRelayException):
    status_code = 403
    public_message = "Forbidden"


class NotAllowedException(ForbiddenException):
    public_message = "Not Allowed"


class UpstreamUnreachableException(GhRelayException):
    pass


class TooManyRedirectsException(UpstreamUnreachableException):
    pass
