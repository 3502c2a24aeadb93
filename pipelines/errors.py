"""Exception types shared by the crawl and fetch pipelines."""


class DocHarborError(Exception):
    """Base class for all DocHarbor errors."""


class ConfigurationError(DocHarborError):
    """Invalid job configuration, raised before any traversal starts."""


class AmbiguousSessionError(ConfigurationError):
    """More than one persisted session matches a resume request."""

    def __init__(self, start_url: str, directories):
        self.start_url = start_url
        self.directories = list(directories)
        listing = ", ".join(str(d) for d in self.directories)
        super().__init__(
            f"Multiple active sessions found for {start_url}: {listing}. "
            f"Pass an explicit output directory to choose one."
        )


class CorruptStateError(DocHarborError):
    """A session or checkpoint file exists but cannot be decoded."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Cannot read persisted state at {path}: {reason}. "
            f"Delete the file to start over."
        )


class RenderError(DocHarborError):
    """The render capability failed for a single URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to render {url}: {reason}")


class CatalogError(DocHarborError):
    """Generic failure talking to the remote catalog API."""

    def __init__(self, identity: str, reason: str, status_code: int = 0):
        self.identity = identity
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{identity}: {reason}")


class NotFoundError(CatalogError):
    """The remote entity no longer exists."""

    def __init__(self, identity: str):
        super().__init__(identity, "not found", status_code=404)


class RateLimitedError(CatalogError):
    """The remote API signalled quota exhaustion."""

    def __init__(self, identity: str, reset_at=None):
        self.reset_at = reset_at
        super().__init__(identity, "rate limit exhausted", status_code=403)
