from letterflow.middleware.logging_middleware import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
