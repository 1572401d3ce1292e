from typing import Optional


class BrokerConnectionError(Exception):
    """Raised when the broker transport cannot be reached"""
    pass

class BrokerAPIError(Exception):
    """Raised when broker API returns an error"""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

class OrderExecutionError(Exception):
    """Raised when order execution fails"""
    pass
