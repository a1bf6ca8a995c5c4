"""
Error taxonomy shared by the catalog client, the analysis proxy client and the proxy itself.
"""


class HeartQueueError(Exception):
    """Base class for all application errors"""


class CatalogError(HeartQueueError):
    """Catalog provider request failed"""


class CatalogTransportError(CatalogError):
    """Request failed, timed out or returned a non-success status"""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class CatalogDecodeError(CatalogError):
    """Response did not match the expected shape"""


class AnalysisProxyError(HeartQueueError):
    """Analysis proxy request failed"""


class AnalysisProxyTransportError(AnalysisProxyError):
    pass


class AnalysisProxyDecodeError(AnalysisProxyError):
    """Proxy answered with a payload this client does not understand"""


class SimilarityServiceError(HeartQueueError):
    """Upstream audio-similarity provider reported an error"""


class WebhookSignatureError(HeartQueueError):
    pass
