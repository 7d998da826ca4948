import logging

from django.utils.deprecation import MiddlewareMixin

from .actors import bind_request, is_history_admin, release_request
from .units import close_unit, open_unit

logger = logging.getLogger(__name__)


class CurrentRequestMiddleware(MiddlewareMixin):
    """Give each request its own history unit and expose its user to the actor resolver."""

    def process_request(self, request):
        request._history_request_token = bind_request(request)
        request._history_unit_token = open_unit()
        # caches group membership on the user for the save receivers
        is_history_admin(getattr(request, "user", None))

    def process_response(self, request, response):
        unit_token = getattr(request, "_history_unit_token", None)
        request_token = getattr(request, "_history_request_token", None)
        try:
            if unit_token is not None:
                close_unit(unit_token)
            if request_token is not None:
                release_request(request_token)
        except ValueError:
            # tokens from another context (async hand-off); nothing to reset here
            logger.debug("History context tokens could not be reset for %s", request.path)
        return response
