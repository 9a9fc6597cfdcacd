# Middleware — request logging
from marketlens.middleware.request_logger import RequestLoggerMiddleware

__all__ = ["RequestLoggerMiddleware"]
