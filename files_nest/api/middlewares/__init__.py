from .internal_headers import parse_internal_headers_middleware


__all__ = ["parse_internal_headers_middleware"]
