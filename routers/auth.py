import hmac
import logging
from typing import Tuple

from fastapi import HTTPException, Request


def is_ingress_request(request: Request) -> bool:
    """Requests proxied by the add-on ingress are already authenticated upstream."""
    return bool(request.headers.get("x-ingress-path", "").strip())


def extract_secret(request: Request) -> Tuple[str, str]:
    """Return (secret, source) from the x-job-secret header or the secret query param."""
    header_secret = request.headers.get("x-job-secret", "").strip()
    if header_secret:
        return header_secret, "header"
    query_secret = request.query_params.get("secret", "").strip()
    if query_secret:
        return query_secret, "query"
    return "", "missing"


def ensure_request_authorized(request: Request, job_secret: str, logger: logging.Logger) -> str:
    """Validate the shared job secret; raises 401 on mismatch."""
    endpoint = request.url.path
    if not job_secret:
        return "not_required"
    if is_ingress_request(request):
        logger.debug("Auth bypass on %s via ingress", endpoint)
        return "ingress"

    provided, source = extract_secret(request)
    if not provided or not hmac.compare_digest(provided, job_secret):
        logger.warning(
            "Unauthorized on %s (source=%s, client=%s)",
            endpoint,
            source,
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
    logger.debug("Auth OK on %s (source=%s)", endpoint, source)
    return source
