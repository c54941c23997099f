class SpiderError(Exception):
    pass


class ConfigurationError(SpiderError, ValueError):
    pass


class InvalidUrlError(SpiderError, ValueError):
    def __init__(self, url: str, reason: str = "only absolute http(s) urls are accepted"):
        super().__init__(f"{reason}: {url!r}")
        self.url = url


class MirrorWriteError(SpiderError, OSError):
    def __init__(self, path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
