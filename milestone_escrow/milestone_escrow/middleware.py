import logging
import time

logger = logging.getLogger('audit')

WRITE_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')
SCOPE_KWARGS = ('project_id', 'milestone_id', 'id', 'method_id', 'user_id')


class RequestAuditMiddleware:
    """
    Writes one 'audit' line per API request. Writes go out at INFO, reads at
    DEBUG, and rejected requests at WARNING, tagged with the URL ids they touched.
    """
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        user = request.user if request.user.is_authenticated else "Anonymous"
        scope = self.get_scope(request)
        line = (
            f"{user} - {request.method} {request.get_full_path()} - {response.status_code} "
            f"- {elapsed_ms}ms - IP: {self.get_client_ip(request)}"
        )
        if scope:
            line += f" - {scope}"

        if response.status_code >= 400:
            logger.warning(line)
        elif request.method in WRITE_METHODS:
            logger.info(line)
        else:
            logger.debug(line)
        return response

    def get_scope(self, request):
        match = getattr(request, 'resolver_match', None)
        if match is None:
            return ''
        return " ".join(f"{key}={match.kwargs[key]}" for key in SCOPE_KWARGS if key in match.kwargs)

    def get_client_ip(self, request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
