"""
Liveness Probe - GET /ping

Returns a fixed body. No authentication and no dependencies, so it stays
up even when configuration or DynamoDB is broken.
"""

import logging
import time

from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.response_utils import text_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

PING_BODY = "pong"


def handler(event, context):
    configure_structured_logging()
    start_time = time.time()
    set_request_id(event)

    response = text_response(PING_BODY)

    log_api_request(logger, "GET", "/ping", 200, (time.time() - start_time) * 1000)
    return response
