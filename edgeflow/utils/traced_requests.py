import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from edgeflow.utils import short_url

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    url: Optional[str],
    method: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        if url:
            span.set_attribute("proxy.url", short_url(url))
        if method:
            span.set_attribute("proxy.method", method)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(start_message)
        yield span
