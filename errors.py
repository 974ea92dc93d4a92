class RepeaterError(Exception):
    status_code = 500


class ValidationError(RepeaterError):
    status_code = 400


class NotFoundError(RepeaterError):
    status_code = 404

    def __init__(self, name):
        super().__init__(f"Channel not found: {name}")
        self.name = name


class UpstreamError(RepeaterError):
    status_code = 502

    def __init__(self, message, status=None):
        super().__init__(message)
        # HTTP status of the upstream response, None for network failures
        self.status = status


class RewriteError(RepeaterError):
    status_code = 500
